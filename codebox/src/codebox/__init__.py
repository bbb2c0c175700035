"""
Codebox - code-execution sandbox service

Runs untrusted Python and Node code under resource and network limits, in an
isolated working directory with a hard wall-clock deadline, and returns the
captured output together with any files the run produced.

Core Components:
- Session Store: live sessions in memory, session history in the database
- Container Runtime: docker containers per session, or a local fallback
- Execution Engine: materializes inputs and runs them under a deadline
- Artifact Collector: inventories and hashes produced files
- Sweeper: reclaims expired and orphaned sessions
"""

__version__ = "0.1.0"
__author__ = "Codebox Team"
