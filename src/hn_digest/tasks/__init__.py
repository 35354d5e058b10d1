"""
Task subsystem.

Components:
- task_models.py: data structures (DailyTask, Article, BatchRecord) and status enums
- task_store.py: SQLite-backed storage for tasks, articles and batch audit rows
- task_executor.py: the five operations that move a day's task through its states
- task_scheduler.py: state-machine step + polling loop that drives the executor
- errors.py: exceptions raised by the executor
"""
