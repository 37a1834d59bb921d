"""Python structural capability built on libcst metadata."""

from __future__ import annotations

from typing import List, Tuple

import libcst as cst
from libcst import metadata

__all__ = ["PythonSymbolCapability"]

PYTHON_TAGS: Tuple[str, ...] = ("import", "class", "function", "method")


class _OutlineCollector(cst.CSTVisitor):
    """Collect import statements and class/function signatures in source order."""

    METADATA_DEPENDENCIES = (metadata.PositionProvider,)

    def __init__(self, module: cst.Module) -> None:
        self._module = module
        self._class_stack: List[str] = []
        self.captures: List[Tuple[str, str]] = []

    def visit_Import(self, node: cst.Import) -> None:
        self.captures.append(("import", self._module.code_for_node(node)))

    def visit_ImportFrom(self, node: cst.ImportFrom) -> None:
        self.captures.append(("import", self._module.code_for_node(node)))

    def visit_ClassDef(self, node: cst.ClassDef) -> None:
        bases = [self._module.code_for_node(base.value) for base in node.bases]
        signature = f"class {node.name.value}"
        if bases:
            signature = f"{signature}({', '.join(bases)})"
        self.captures.append(("class", f"{signature}  # line {self._line(node)}"))
        self._class_stack.append(node.name.value)

    def leave_ClassDef(self, original_node: cst.ClassDef) -> None:
        if self._class_stack:
            self._class_stack.pop()

    def visit_FunctionDef(self, node: cst.FunctionDef) -> bool:
        keyword = "async def" if node.asynchronous is not None else "def"
        name = ".".join([*self._class_stack, node.name.value])
        signature = f"{keyword} {name}({self._module.code_for_node(node.params)})"
        if node.returns is not None:
            signature = f"{signature} -> {self._module.code_for_node(node.returns.annotation)}"
        tag = "method" if self._class_stack else "function"
        self.captures.append((tag, f"{signature}  # line {self._line(node)}"))
        # Nested helpers are implementation detail.
        return False

    def _line(self, node: cst.CSTNode) -> int:
        return self.get_metadata(metadata.PositionProvider, node).start.line


class PythonSymbolCapability:
    """Outline Python modules as import lines and callable signatures.

    Raises ``ValueError`` for unparsable source; the
    compressor falls back to raw content in that case.
    """

    language = "python"
    tags = PYTHON_TAGS

    def extract(self, path: str, source: str) -> List[Tuple[str, str]]:
        try:
            module = cst.parse_module(source)
        except cst.ParserSyntaxError as error:
            raise ValueError(f"invalid Python syntax in {path}: {error.message}") from error
        wrapper = metadata.MetadataWrapper(module)
        collector = _OutlineCollector(wrapper.module)
        wrapper.visit(collector)
        return collector.captures
