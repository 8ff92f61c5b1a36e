"""
Estimate Kernel

Pure core of the software-project estimation system:
- Rate entities, categories and calculation parameters
- Structural cloning with a documented depth guarantee
- Validation returning structured, human-readable reasons
- Typed exceptions with machine-readable codes
- Structured JSON logging
"""

__version__ = "0.1.0"
