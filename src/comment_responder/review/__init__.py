"""Comment review pipeline: approval workflow, runner dispatch and live output.

Tasks move through a compare-and-set state machine stored in SQLite. Operator
approval puts a task id on a bounded in-process queue drained by a single
consumer thread, so at most one external AI runner process exists at a time.
The runner's stdout and stderr are pumped line by line into a shared-sequence
chunk log that observers read through a cursor-based event stream.

A broker-backed queue would add an operational dependency without removing
any of the custom logic (runner contract, output recovery, audit trail), so
the queue stays in memory and the database remains the only durable state.
"""
