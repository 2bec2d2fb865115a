"""Frontend: compilation units and symbol resolution."""

from .loader import (
    SourceUnit,
    CodeUnit,
    load_source_file,
    load_source_string,
    load_code_file,
    load_code_string,
)
from .symbols import (
    ResolvedSymbol,
    SymbolKind,
    SymbolTable,
    fold_string,
)

__all__ = [
    'SourceUnit',
    'CodeUnit',
    'load_source_file',
    'load_source_string',
    'load_code_file',
    'load_code_string',
    'ResolvedSymbol',
    'SymbolKind',
    'SymbolTable',
    'fold_string',
]
