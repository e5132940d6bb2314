"""
Imagery Processing Pipeline

- orchestration: request id binding and outcome logging per operation
- batch: ordered operations folded over several images, all-or-nothing
"""
