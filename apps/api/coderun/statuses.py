from enum import IntEnum

class StatusId(IntEnum):
    IN_QUEUE=1
    PROCESSING=2
    ACCEPTED=3
    WRONG_ANSWER=4
    TIME_LIMIT_EXCEEDED=5
    COMPILATION_ERROR=6
    RUNTIME_ERROR_SIGSEGV=7
    RUNTIME_ERROR_SIGXFSZ=8
    RUNTIME_ERROR_SIGFPE=9
    RUNTIME_ERROR_SIGABRT=10
    RUNTIME_ERROR_NZEC=11
    RUNTIME_ERROR_OTHER=12
    INTERNAL_ERROR=13

STATUS_NAMES = {
    StatusId.IN_QUEUE: 'In Queue', StatusId.PROCESSING: 'Processing', StatusId.ACCEPTED: 'Accepted',
    StatusId.WRONG_ANSWER: 'Wrong Answer', StatusId.TIME_LIMIT_EXCEEDED: 'Time Limit Exceeded',
    StatusId.COMPILATION_ERROR: 'Compilation Error',
    StatusId.RUNTIME_ERROR_SIGSEGV: 'Runtime Error (SIGSEGV)', StatusId.RUNTIME_ERROR_SIGXFSZ: 'Runtime Error (SIGXFSZ)',
    StatusId.RUNTIME_ERROR_SIGFPE: 'Runtime Error (SIGFPE)', StatusId.RUNTIME_ERROR_SIGABRT: 'Runtime Error (SIGABRT)',
    StatusId.RUNTIME_ERROR_NZEC: 'Runtime Error (NZEC)', StatusId.RUNTIME_ERROR_OTHER: 'Runtime Error (Other)',
    StatusId.INTERNAL_ERROR: 'Internal Error',
}

# signal number -> runtime error status; anything else non-zero is RUNTIME_ERROR_OTHER
SIGNAL_STATUS = {
    11: (StatusId.RUNTIME_ERROR_SIGSEGV, 'Segmentation fault'),
    25: (StatusId.RUNTIME_ERROR_SIGXFSZ, 'File size limit exceeded'),
    8: (StatusId.RUNTIME_ERROR_SIGFPE, 'Floating point exception'),
    6: (StatusId.RUNTIME_ERROR_SIGABRT, 'Aborted'),
}

LANGUAGES = [
    {'id': 1, 'name': 'JavaScript (Node.js 20)', 'compile_cmd': None, 'run_cmd': 'node solution.js', 'source_file': 'solution.js'},
    {'id': 2, 'name': 'TypeScript (5.3)', 'compile_cmd': 'tsc solution.ts --outDir .', 'run_cmd': 'node solution.js', 'source_file': 'solution.ts'},
    {'id': 3, 'name': 'Python (3.11)', 'compile_cmd': None, 'run_cmd': 'python3 solution.py', 'source_file': 'solution.py'},
    {'id': 4, 'name': 'Java (OpenJDK 17)', 'compile_cmd': 'javac Solution.java', 'run_cmd': 'java -cp . Solution', 'source_file': 'Solution.java'},
    {'id': 5, 'name': 'C++ (GCC 11)', 'compile_cmd': 'g++ -std=c++17 -O2 solution.cpp -o solution', 'run_cmd': './solution', 'source_file': 'solution.cpp'},
]

def is_terminal(status_id:int)->bool:
    return status_id > StatusId.PROCESSING

def status_dict(status_id:int)->dict:
    sid=StatusId(status_id); name=STATUS_NAMES[sid]
    return {'id': int(sid), 'name': name, 'description': name}
