"""External process execution.

- **runner**: buffered and streaming subprocess execution with output caps,
  deadlines and process-group cleanup
- **privileged**: container-runtime invocations through an elevation layer
"""
