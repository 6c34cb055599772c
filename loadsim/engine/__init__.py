"""
loadsim.engine: stage scheduler, virtual user pool and run orchestration.

    schedule.py   Stage, Schedule, parse_duration
    pool.py       VirtualUser, VirtualUserPool, ThinkTime
    runtime.py    Engine, RunResult
"""
