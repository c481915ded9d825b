import os, copy, socket, yaml

DEFAULTS = {
  'rate_limit': {'requests_per_minute': 60, 'window_seconds': 60, 'shards': 8, 'sweep_seconds': 60, 'trusted_proxies': []},
  'batch': {'max_size': 20},
  'execution': {
    'number_of_runs': 1, 'cpu_time_limit': 5.0, 'cpu_extra_time': 1.0, 'wall_time_limit': 10.0,
    'memory_limit': 512000, 'stack_limit': 64000, 'max_processes_and_or_threads': 60,
    'enable_per_process_and_thread_time_limit': True, 'enable_per_process_and_thread_memory_limit': True,
    'max_file_size': 1024, 'host': None,
  },
  'timeouts': {'max_wait': 30.0, 'poll_interval': 0.5},
  'cache': {'ttl': 3600, 'static_ttl': 86400},
  'sandbox': {'backend': 'local', 'root': None, 'url': 'http://localhost:8787', 'network_isolation': False, 'stdin_file': '.stdin-stdin.txt'},
  'queue': {'max_attempts': 3, 'retry_delay': 1.0, 'workers': 4},
  'websocket': {'retention_seconds': 3600, 'sweep_seconds': 300},
  'callback': {'timeout': 10.0},
  'database': {'url': 'sqlite:///./coderun.db'},
  'logging': {'level': 'INFO', 'format': '%(asctime)s %(levelname)s %(name)s: %(message)s'},
}

ENV_OVERRIDES = {
  'DATABASE_URL': ('database', 'url'),
  'SANDBOX_URL': ('sandbox', 'url'),
  'SANDBOX_BACKEND': ('sandbox', 'backend'),
  'LOG_LEVEL': ('logging', 'level'),
}

_cfg=None

def merge(a:dict, b:dict)->dict:
  for k,v in (b or {}).items():
    if isinstance(v,dict) and isinstance(a.get(k),dict): merge(a[k], v)
    else: a[k]=v
  return a

def load_config(path:str=None)->dict:
  cfg=copy.deepcopy(DEFAULTS)
  path=path or os.getenv('CODERUN_CONFIG') or os.path.join(os.path.dirname(__file__),'..','config.yaml')
  if os.path.exists(path):
    with open(path,'r',encoding='utf-8') as f: merge(cfg, yaml.safe_load(f) or {})
  for env,(section,key) in ENV_OVERRIDES.items():
    if os.getenv(env): cfg[section][key]=os.getenv(env)
  if not cfg['execution'].get('host'): cfg['execution']['host']=socket.gethostname()
  return cfg

def get_config():
  global _cfg
  if _cfg is not None: return _cfg
  _cfg=load_config()
  return _cfg
