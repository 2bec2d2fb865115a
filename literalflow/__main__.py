"""
Allow running literalflow as a module:

    python -m literalflow resolve <file> --call <name>

Delegates to literalflow.cli:main().
"""
import sys
from .cli import main

sys.exit(main())
