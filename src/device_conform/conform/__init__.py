"""Conformance core.

Modules, in dependency order:
- ``polling``: bounded, cancellable waits
- ``classifier``: exception to verdict mapping
- ``results``: ResultSet and VerdictRecorder
- ``handling``: classify-and-record helpers
- ``timing``: response-time measurement
- ``connection``: Connect/Disconnect state machine
- ``orchestrator``: the step sequence of one run
- ``report``: end-of-run text report
- ``manager``: configuration, handle lifecycle and sealing

Import from the modules directly.
"""
