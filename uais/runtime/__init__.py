"""Runtime orchestration for UAIS runner processes.

This layer is responsible for:
- resolving configured runners and spawning one process per job
- relaying process output to a single live consumer (buffering until one attaches)
- writing operator input into a running job's stdin
- running a selection of runners one after another

It should remain independent from the HTTP layer (`uais/api`), so both CLI and API
can reuse the same execution logic.
"""
