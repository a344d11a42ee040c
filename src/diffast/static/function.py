# SPDX-FileCopyrightText: Copyright (c) 2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

import ast
import os
import tempfile
from logging import getLogger, FileHandler
from warnings import warn

from diffast.activity_defs import Form
from diffast.contract import ABI_VERSION, intrinsic_name, tag_for
from diffast.decl import AutodiffSite, ModuleDecls
from diffast.errors import DerivedNameConflictError
from diffast.expand import Expansion, expand_site
from diffast.parser import function_from_ast
from diffast.signature import ParamRole
from diffast.static.renderer import BaseRenderer, get_rendered_imports
from diffast.types import RefKind, numba_type_str

file_logger = getLogger(f"{__name__}")
logger_path = os.path.join(tempfile.gettempdir(), "diffast_function.log")
file_logger.debug(f"Function debug outputs are written to {logger_path}")
file_logger.addHandler(FileHandler(logger_path))


def _tuple_str(items: list[str]) -> str:
    if len(items) == 1:
        return f"({items[0]},)"
    return f"({', '.join(items)})"


class StaticDerivedRenderer(BaseRenderer):
    """Base class of the renderers for one derived entity.

    Parameters
    ----------
    expansion: diffast.expand.Expansion
        The expanded `@autodiff` invocation.
    """

    signature_template = "numba.core.typing.signature({return_type}, {param_types})"

    def __init__(self, expansion: Expansion):
        super().__init__(expansion)
        self._signature = expansion.signature

    def _type_str(self, nbty) -> str:
        self._try_import_numba_type(nbty)
        return numba_type_str(nbty, self.numba_types_prefix)

    def _render_abi_signature(self) -> str:
        self._imports.add("import numba.core.typing")
        abi = self._signature.abi_signature()
        param_types = ", ".join(self._type_str(t) for t in abi.args)
        return self.signature_template.format(
            return_type=self._type_str(abi.return_type),
            param_types=param_types,
        )

    def _tag(self, activity) -> str:
        tag = tag_for(activity)
        self._imports.add(f"from diffast.contract import {tag.name}")
        return tag.name

    @property
    def derived_name(self) -> str:
        return self._expansion.derived_name


class StaticDefinitionRenderer(StaticDerivedRenderer):
    """Render the derived `def` of a definition-form invocation.

    The body of the derived function is a single tagged call to the mode's
    intrinsic; the primal is referenced by name and must be defined before
    the derived function is called.
    """

    derived_template = """
def {derived_name}({params}) -> {return_type}:
    return {intrinsic}(
        {args}
    )


{derived_name}.abi_signature = {abi_signature}
"""

    def _render_param(self, p) -> str:
        ty = p.type_
        base = self._type_str(ty.base)
        if ty.ref_kind is RefKind.value:
            return f"{p.name}: {base}"
        marker = "Ref" if ty.ref_kind is RefKind.ref else "MutRef"
        self._imports.add(f"from diffast.lang import {marker}")
        return f"{p.name}: {marker}[{base}]"

    def _render_return_type(self) -> str:
        if not self._signature.results:
            return "None"
        return self._type_str(self._signature.return_type)

    def _render_call_args(self) -> list[str]:
        sig = self._signature
        args = [self._expansion.primal.name]
        for p in sig.params:
            if p.role is ParamRole.primal:
                args.append(self._tag(p.activity))
                args.append(p.name)
            elif p.role is ParamRole.shadow:
                args.append(p.name)

        args.append(f"ret={self._tag(sig.assignment.ret)}")
        seed = sig.seed
        if seed is not None:
            args.append(f"seed={seed.name}")
        args.append(f'symbol="{self._expansion.symbol}"')
        args.append(f"abi_version={ABI_VERSION}")
        return args

    def render_python(self) -> str:
        intrinsic = intrinsic_name(self._expansion.mode)
        self._imports.add(f"from diffast.runtime import {intrinsic}")

        params = ", ".join(self._render_param(p) for p in self._signature.params)
        return self.derived_template.format(
            derived_name=self.derived_name,
            params=params,
            return_type=self._render_return_type(),
            intrinsic=intrinsic,
            args=",\n        ".join(self._render_call_args()) + ",",
            abi_signature=self._render_abi_signature(),
        )


class StaticDeclarationRenderer(StaticDerivedRenderer):
    """Render the tagged stub that replaces a declaration-form invocation."""

    declaration_template = """
{derived_name} = declare_derivative(
    __name__,
    "{primal_name}",
    name="{derived_name}",
    mode="{mode}",
    activities={activities},
    ret={ret},
    params={params},
    symbol="{symbol}",
    abi_version={abi_version},
)
{derived_name}.abi_signature = {abi_signature}
"""

    def render_python(self) -> str:
        self._imports.add("from diffast.runtime import declare_derivative")

        assignment = self._signature.assignment
        activities = [self._tag(a) for a in assignment.params]
        params = [f'"{name}"' for name in self._signature.param_names]
        return self.declaration_template.format(
            derived_name=self.derived_name,
            primal_name=self._expansion.primal.name,
            mode=self._expansion.mode.value,
            activities=_tuple_str(activities),
            ret=self._tag(assignment.ret),
            params=_tuple_str(params),
            symbol=self._expansion.symbol,
            abi_version=ABI_VERSION,
            abi_signature=self._render_abi_signature(),
        )


def renderer_for(expansion: Expansion) -> StaticDerivedRenderer:
    if expansion.form is Form.definition:
        return StaticDefinitionRenderer(expansion)
    return StaticDeclarationRenderer(expansion)


def _import_insertion_line(tree: ast.Module) -> int:
    """Last line of the module docstring and `__future__` imports, or 0."""
    line = 0
    for i, node in enumerate(tree.body):
        if (
            i == 0
            and isinstance(node, ast.Expr)
            and isinstance(node.value, ast.Constant)
            and isinstance(node.value.value, str)
        ):
            line = node.end_lineno
            continue
        if isinstance(node, ast.ImportFrom) and node.module == "__future__":
            line = node.end_lineno
            continue
        break
    return line


class StaticAutodiffModuleRenderer(BaseRenderer):
    """Rewrite a module so that every `@autodiff` invocation is expanded.

    Primals are kept as written, with only the consumed decorator removed.
    Each definition-form derived function is inserted right after its
    primal; each declaration-form stub is replaced by its tagged stub.

    Parameters
    ----------
    decls: diffast.decl.ModuleDecls
        The parsed module.
    module_name: str, Optional
        Name the generated module is imported as. Primal identities and
        derived symbols are built from it. Defaults to the parsed name.
    excludes: list[str], Optional
        Primal or derived names whose invocations are left untouched. Those
        keep their decorator and are expanded when the module is imported.
    additional_imports: list[str], Optional
        Modules to import in the generated module, next to the imports the
        derived entities need.
    """

    def __init__(
        self,
        decls: ModuleDecls,
        module_name: str | None = None,
        excludes: list[str] = [],
        additional_imports: list[str] = [],
    ):
        self._decls = decls
        self._module_name = module_name or decls.module_name
        self._excludes = excludes
        self._additional_imports = additional_imports
        self._imports: set[str] = set()

        self._expansions: list[tuple[AutodiffSite, Expansion]] = []
        self._python_rendered: dict[str, str] = {}

    def _should_skip_site(self, site: AutodiffSite) -> bool:
        names = {site.function.name}
        if site.tokens and isinstance(site.tokens[0], str):
            names.add(site.tokens[0])
        if names & set(self._excludes):
            warn(
                f"Skipping autodiff invocation on {site.function.name}; "
                "it is expanded when the module is imported."
            )
            return True
        return False

    def _resolve_primal(self, name: str):
        node = self._decls.functions.get(name)
        if node is None:
            return None
        return function_from_ast(node)

    def _expand(self):
        stubs = {
            site.function.name
            for site in self._decls.sites
            if site.form is Form.declaration
        }
        taken = self._decls.names - stubs
        for site in self._decls.sites:
            if self._should_skip_site(site):
                continue
            expansion = expand_site(site, self._resolve_primal, self._module_name)
            name = expansion.derived_name
            if name in taken:
                raise DerivedNameConflictError(name).attach_location(
                    site.function.name, site.function.lineno
                )
            taken.add(name)
            self._expansions.append((site, expansion))

    def _render_expansions(self):
        for _, expansion in self._expansions:
            renderer = renderer_for(expansion)
            self._python_rendered[expansion.derived_name] = renderer.render_python()
            self._imports |= renderer.imports
            self._derived_symbols.append(expansion.derived_name)

    def _splice(self, with_imports: bool) -> str:
        lines = self._decls.source.splitlines(keepends=True)
        if lines and not lines[-1].endswith("\n"):
            lines[-1] += "\n"

        # (first line, last line, replacement), 1-based and inclusive. An
        # insertion before line n is written (n, n - 1, text).
        edits: list[tuple[int, int, str]] = []
        for site, expansion in self._expansions:
            fn = site.function
            rendered = self._python_rendered[expansion.derived_name]
            if expansion.form is Form.definition:
                first, last = site.decorator_span
                edits.append((first, last, ""))
                edits.append((fn.end_lineno + 1, fn.end_lineno, "\n" + rendered))
            else:
                edits.append((fn.first_lineno, fn.end_lineno, rendered.lstrip("\n")))

        if with_imports and (self._imports or self._additional_imports):
            self.Imports.update(self._imports)
            at = _import_insertion_line(ast.parse(self._decls.source))
            imports = get_rendered_imports(self._additional_imports)
            edits.append((at + 1, at, imports.lstrip("\n")))

        for first, last, text in sorted(
            edits, key=lambda e: (e[0], e[1]), reverse=True
        ):
            lines[first - 1 : last] = [text]

        return "".join(lines)

    def render_as_str(self, *, with_imports: bool) -> str:
        """Return the rewritten module source. This output should be final."""
        self._expand()
        self._render_expansions()
        output = self._splice(with_imports)
        file_logger.debug(output)

        return output

    @property
    def expansions(self) -> list[Expansion]:
        return [e for _, e in self._expansions]
