from typing import Dict, List, Optional

class CodeRunError(Exception):
    status_code=500

class ValidationError(CodeRunError):
    """Intake-time rejection. `errors` maps a field to its messages; without it the message stands alone."""
    status_code=422
    def __init__(self, message:str, errors:Optional[Dict[str,List[str]]]=None, status_code:Optional[int]=None):
        super().__init__(message)
        self.errors=errors or {}
        if status_code: self.status_code=status_code

class PathTraversalError(ValidationError):
    def __init__(self, path:str, reason:str):
        super().__init__(f"Invalid path: {path}. {reason}", {'additional_files': [f"invalid path {path}"]})
        self.path=path

class NotFoundError(CodeRunError):
    status_code=404

class InvalidTransition(CodeRunError):
    pass
