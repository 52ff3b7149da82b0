"""
Assessment Pipeline - batched LLM assessment of student work.

This package scores student responses against reference answers through an
external assessor service, avoiding redundant calls with a content-hash
keyed cache and routing batched responses back to the right student/task.
"""

__version__ = "1.0.0"
