import base64, binascii, json
from typing import Any, Dict, List, Optional
from .errors import ValidationError

def b64decode_text(value:Optional[str], field:str)->Optional[str]:
    if value is None: return None
    try: return base64.b64decode(value, validate=True).decode('utf-8')
    except (binascii.Error, ValueError, UnicodeDecodeError): raise ValidationError(f"Invalid base64 encoding in {field}", status_code=400)

def b64encode_text(value:Optional[str])->Optional[str]:
    if not value: return value
    return base64.b64encode(value.encode('utf-8')).decode('ascii')

def parse_additional_files(raw:str)->List[Dict[str,Any]]:
    """Decode the base64 JSON array of {path, content | content_base64} entries; entries without a path are dropped."""
    try: parsed=json.loads(base64.b64decode(raw, validate=True).decode('utf-8'))
    except (binascii.Error, ValueError, UnicodeDecodeError):
        raise ValidationError('additional_files must be valid base64-encoded JSON', {'additional_files': ['additional_files must be valid base64-encoded JSON']})
    if not isinstance(parsed, list):
        raise ValidationError('additional_files payload must be a JSON array', {'additional_files': ['additional_files payload must be a JSON array']})
    out=[]
    for f in parsed:
        if not isinstance(f, dict) or not isinstance(f.get('path'), str) or not f['path'].strip(): continue
        item={'path': f['path'].strip()}
        b64=f.get('content_base64', f.get('contentBase64'))
        if isinstance(b64, str):
            try: base64.b64decode(b64, validate=True)
            except (binascii.Error, ValueError):
                msg=f"content_base64 of {item['path']} is not valid base64"
                raise ValidationError(msg, {'additional_files': [msg]})
            item['content_base64']=b64
        elif isinstance(f.get('content'), str): item['content']=f['content']
        else: item['content']=''
        out.append(item)
    return out
