"""Extension context for the model.

Renders the functions each enabled extension exposes, read from its source
with ``ast``. Extension code is never executed here. Exports re-exported from
this package's own modules (``aibase.*``) are imported to read their
signatures; any other import is described as ``(...)``.
"""

from __future__ import annotations

import ast
import importlib
import inspect
from dataclasses import dataclass
from typing import Dict, List, Optional

from aibase.config.paths import DataPaths, TenantId, get_data_paths
from aibase.core.logging import get_logger
from aibase.extensions.evaluation import namespace_for
from aibase.storage.category_storage import CategoryStorage
from aibase.storage.extension_storage import Extension, ExtensionStorage

logger = get_logger(__name__)

# Package whose modules may be imported to resolve re-exported signatures.
RESOLVABLE_PACKAGE = "aibase"


@dataclass
class FunctionSignature:
    name: str
    params: str
    returns: Optional[str] = None
    is_async: bool = False
    doc: Optional[str] = None


def _from_ast(node: ast.AST) -> FunctionSignature:
    params = ast.unparse(node.args)
    returns = ast.unparse(node.returns) if node.returns is not None else None
    doc = ast.get_docstring(node)
    return FunctionSignature(
        name=node.name,
        params=params,
        returns=returns,
        is_async=isinstance(node, ast.AsyncFunctionDef),
        doc=doc.splitlines()[0] if doc else None,
    )


def _from_object(name: str, obj) -> FunctionSignature:
    try:
        try:
            signature = inspect.signature(obj, eval_str=True)
        except NameError:
            signature = inspect.signature(obj)
        params = str(signature.replace(return_annotation=inspect.Signature.empty))[1:-1]
        returns = None
        if signature.return_annotation is not inspect.Signature.empty:
            annotation = signature.return_annotation
            returns = annotation if isinstance(annotation, str) else inspect.formatannotation(annotation)
    except (TypeError, ValueError):
        params, returns = "...", None
    doc = inspect.getdoc(obj)
    return FunctionSignature(
        name=name,
        params=params,
        returns=returns,
        is_async=inspect.iscoroutinefunction(obj),
        doc=doc.splitlines()[0] if doc else None,
    )


class _SourceIndex:
    """Top-level definitions, imports and export declarations of a module."""

    def __init__(self, tree: ast.Module):
        self.functions: Dict[str, ast.AST] = {}
        self.imports: Dict[str, str] = {}
        self.all_names: Optional[List[str]] = None
        self.exports: Optional[Dict[str, ast.AST]] = None

        for node in tree.body:
            if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                self.functions[node.name] = node
            elif isinstance(node, ast.ImportFrom) and node.module and node.level == 0:
                for alias in node.names:
                    self.imports[alias.asname or alias.name] = f"{node.module}:{alias.name}"
            elif isinstance(node, ast.Import):
                for alias in node.names:
                    self.imports[alias.asname or alias.name.split(".")[0]] = alias.name
            elif isinstance(node, ast.Assign):
                self._assignment(node)

    def _assignment(self, node: ast.Assign) -> None:
        for target in node.targets:
            if not isinstance(target, ast.Name):
                continue
            if target.id == "__all__" and isinstance(node.value, (ast.List, ast.Tuple)):
                self.all_names = [
                    elt.value for elt in node.value.elts
                    if isinstance(elt, ast.Constant) and isinstance(elt.value, str)
                ]
            elif target.id == "exports" and isinstance(node.value, ast.Dict):
                self.exports = {
                    key.value: value
                    for key, value in zip(node.value.keys, node.value.values)
                    if isinstance(key, ast.Constant) and isinstance(key.value, str)
                }

    def _resolve_import(self, node: ast.AST):
        """Import the object an imported name or attribute refers to."""
        if isinstance(node, ast.Name):
            target = self.imports.get(node.id)
            if target is None:
                return None
            module_name, _, attr = target.partition(":")
            if module_name != RESOLVABLE_PACKAGE and not module_name.startswith(f"{RESOLVABLE_PACKAGE}."):
                return None
            module = importlib.import_module(module_name)
            if not attr:
                return module
            if hasattr(module, attr):
                return getattr(module, attr)
            return importlib.import_module(f"{module_name}.{attr}")
        if isinstance(node, ast.Attribute):
            base = self._resolve_import(node.value)
            return getattr(base, node.attr) if base is not None else None
        return None

    def signature(self, name: str, node: Optional[ast.AST] = None) -> FunctionSignature:
        node = node if node is not None else ast.Name(id=name)
        if isinstance(node, ast.Name) and node.id in self.functions:
            sig = _from_ast(self.functions[node.id])
            sig.name = name
            return sig
        try:
            obj = self._resolve_import(node)
        except (ImportError, AttributeError) as exc:
            logger.debug(f"Could not resolve export {name}", data={"error": str(exc)})
            obj = None
        if obj is not None and callable(obj):
            return _from_object(name, obj)
        return FunctionSignature(name=name, params="...")

    def exported(self) -> List[FunctionSignature]:
        if self.exports is not None:
            return [self.signature(name, value) for name, value in self.exports.items()]
        if self.all_names is not None:
            return [self.signature(name) for name in self.all_names]
        return [self.signature(name) for name in self.functions if not name.startswith("_")]


def extension_functions(code: str) -> List[FunctionSignature]:
    """Public functions an extension exposes, in declaration order."""
    try:
        tree = ast.parse(code)
    except SyntaxError as exc:
        logger.warning("Could not parse extension source", data={"error": str(exc)})
        return []
    return _SourceIndex(tree).exported()


def call_form(namespace: str, function: str) -> str:
    """How a script calls ``function`` of the ``namespace`` extension."""
    return namespace if function == namespace else f"{namespace}.{function}"


def generate_extension_context(extension: Extension) -> str:
    """Markdown block describing one extension."""
    metadata = extension.metadata
    namespace = namespace_for(metadata.id)
    functions = extension_functions(extension.code)

    lines = [
        f"### {metadata.name}",
        "",
        f"**ID**: `{metadata.id}` (script name: `{namespace}`)",
        f"**Category**: {metadata.category or 'Uncategorized'}",
        f"**Description**: {metadata.description}",
        "",
    ]

    if not functions:
        lines.append("**Available Functions**: No functions found")
        return "\n".join(lines) + "\n"

    lines.append("**Available Functions**:")
    lines.append("")
    for fn in functions:
        prefix = "await " if fn.is_async else ""
        returns = f" -> {fn.returns}" if fn.returns else ""
        lines.append(f"**{fn.name}**")
        if fn.doc:
            lines.append(fn.doc)
        lines.append("```python")
        lines.append(f"{prefix}{call_form(namespace, fn.name)}({fn.params}){returns}")
        lines.append("```")
        lines.append("")

    lines.append("**Usage Example**:")
    lines.append("```python")
    if metadata.examples:
        lines.append(metadata.examples[0].code)
    else:
        first = functions[0]
        prefix = "await " if first.is_async else ""
        lines.append(f"result = {prefix}{call_form(namespace, first.name)}(...)")
        lines.append("return result")
    lines.append("```")
    return "\n".join(lines) + "\n"


def generate_extensions_context(
    project_id: str,
    tenant_id: TenantId,
    paths: Optional[DataPaths] = None,
    extensions: Optional[List[Extension]] = None,
) -> str:
    """Context for every enabled extension, grouped by category name.

    ``extensions`` overrides the project's stored extensions (used when
    loading straight from the bundled defaults).
    """
    paths = paths or get_data_paths()
    if extensions is None:
        extensions = ExtensionStorage(paths).get_enabled(project_id, tenant_id)
    if not extensions:
        return ""

    names = {c.id: c.name for c in CategoryStorage(paths).get_all(project_id, tenant_id)}
    grouped: Dict[str, List[Extension]] = {}
    for extension in extensions:
        category = names.get(extension.metadata.category, "Uncategorized")
        grouped.setdefault(category, []).append(extension)

    parts = [
        "\n\n## Project Extensions\n",
        "The following extensions are available as functions inside scripts:\n",
    ]
    for category, items in grouped.items():
        parts.append(f"### {category}\n")
        parts.extend(generate_extension_context(ext) for ext in items)
    return "\n".join(parts)
