"""
JSON Schema $ref Resolution.

This module dereferences every $ref in a schema file, including references
into other files, and handles schemas whose references form cycles.

Resolution happens in two passes over one schema file:

    1. Cycle detection: a depth-first walk follows every reference while
       keeping the stack of reference targets currently being expanded.
       A reference is cyclic when its target is already on that stack, or
       when the target contains the node holding the reference. Every
       reference found is recorded as a RefEdge keyed by its position in
       the resolved output and in its source document.
    2. Materialization: the schema is rebuilt with non-cyclic references
       expanded in place. Cyclic references (or all references, when
       force_replace is set) are replaced by a placeholder chosen by the
       replacement policy.

    Keywords next to a $ref (e.g. "items" beside a "$ref" to an array
    definition) are walked in both passes and merged over the expansion.

Replacement Policies:
    object   (default) an open object that accepts anything
    objectid a 24 character hex string identifying another stored entity
    uri      a string formatted as a URI

    Unknown policy names fall back to "object".

Supported References:
    #/definitions/Thing              pointer into the same document
    Person.json                      another file, relative to the referrer
    ../Thing.json#/definitions/Y     pointer into another file
    file:///abs/path/Thing.json      file URI
    https://example.com/thing.json   remote document (fetched with requests)

Errors:
    Anything that stops a reference from being dereferenced (a missing file,
    invalid JSON, a pointer to nothing, an HTTP failure) raises
    ReferenceResolutionError. Such errors are never mistaken for cycles.
"""
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union
from urllib.parse import unquote, urljoin, urlparse
from urllib.request import url2pathname

import requests

from .errors import ReferenceResolutionError

logger = logging.getLogger(__name__)

OBJECTID_PATTERN = "^[0-9a-fA-F]{24}$"

DEFAULT_POLICY = "object"
REPLACEMENT_POLICIES = ("object", "objectid", "uri")

HTTP_TIMEOUT_SECONDS = 10

NodePath = Tuple[Union[str, int], ...]


def normalize_policy(policy: Optional[str]) -> str:
    """Return a known replacement policy name, defaulting to "object"."""
    if isinstance(policy, str) and policy.strip().lower() in REPLACEMENT_POLICIES:
        return policy.strip().lower()
    return DEFAULT_POLICY


def replacement_for(ref: str, policy: str) -> Dict[str, Any]:
    """Build the placeholder node that stands in for a replaced reference."""
    policy = normalize_policy(policy)
    if policy == "objectid":
        return {
            "type": "string",
            "format": "objectid",
            "pattern": OBJECTID_PATTERN,
            "description": f"The ObjectID of an object in the database matching the schema {ref}",
        }
    if policy == "uri":
        return {
            "type": "string",
            "format": "uri",
            "description": f"The URL of a resource matching the schema {ref}",
        }
    return {
        "type": "object",
        "properties": {},
        "additionalProperties": True,
        "description": f"An object matching the schema {ref}",
    }


def format_path(path: NodePath) -> str:
    """Render a node path the way replaced references are keyed (dot separated)."""
    return ".".join(str(part) for part in path)


def _escape_pointer_token(token: Union[str, int]) -> str:
    return str(token).replace("~", "~0").replace("/", "~1")


def _unescape_pointer_token(token: str) -> str:
    return token.replace("~1", "/").replace("~0", "~")


@dataclass(frozen=True)
class RefTarget:
    """A node addressed by document and JSON pointer ("" is the whole document)."""

    document: str
    pointer: str = ""

    def child(self, key: Union[str, int]) -> "RefTarget":
        return RefTarget(self.document, f"{self.pointer}/{_escape_pointer_token(key)}")

    def contains(self, other: "RefTarget") -> bool:
        """True if ``other`` is this node or lies somewhere beneath it."""
        if self.document != other.document:
            return False
        if not self.pointer or self.pointer == other.pointer:
            return True
        return other.pointer.startswith(self.pointer + "/")

    def __str__(self) -> str:
        return f"{self.document}#{self.pointer}"


@dataclass(frozen=True)
class RefEdge:
    """One reference found during resolution."""

    path: NodePath
    ref: str
    target: RefTarget
    cyclic: bool


@dataclass
class ResolutionResult:
    """Outcome of resolving one schema file.

    Attributes:
        schema: The resolved (possibly sanitized) schema
        replaced_references: Dotted node path -> original $ref, for every
            reference replaced by a placeholder
        edges: Every reference found, with its cycle classification
    """

    schema: Any
    replaced_references: Dict[str, str] = field(default_factory=dict)
    edges: List[RefEdge] = field(default_factory=list)

    @property
    def cyclic(self) -> bool:
        return any(edge.cyclic for edge in self.edges)


class ReferenceResolver:
    """Dereferences schema files according to a replacement policy.

    The resolver holds configuration only, so one instance can resolve many
    files from different threads at the same time.

    Args:
        policy: Placeholder used for cyclic references (object, objectid, uri)
        force_replace: Replace every reference, cyclic or not
        http_timeout: Timeout in seconds for fetching remote documents
    """

    def __init__(self, policy: Optional[str] = DEFAULT_POLICY, force_replace: bool = False,
                 http_timeout: float = HTTP_TIMEOUT_SECONDS):
        self.policy = normalize_policy(policy)
        self.force_replace = force_replace
        self.http_timeout = http_timeout

    def resolve(self, path: Union[str, os.PathLike]) -> ResolutionResult:
        """Resolve every $ref in the schema file at ``path``.

        Raises:
            ReferenceResolutionError: If the file or any reference cannot be loaded
        """
        return _Resolution(self, Path(path).resolve()).run()


class _Resolution:
    """State for resolving one schema file: loaded documents and found edges."""

    def __init__(self, resolver: ReferenceResolver, source: Path):
        self.resolver = resolver
        self.source = str(source)
        self.documents: Dict[str, Any] = {}
        self.edges: Dict[Tuple[NodePath, RefTarget], RefEdge] = {}
        self.replaced: Dict[str, str] = {}

    def run(self) -> ResolutionResult:
        root = RefTarget(self.source)
        document = self._load_document(self.source, None)

        self._detect_cycles(document, root, (), (root,))

        if self.resolver.force_replace and self.edges:
            logger.warning(f"Replacing all references in schema '{self.source}' "
                           f"with '{self.resolver.policy}' placeholders")
        elif any(edge.cyclic for edge in self.edges.values()):
            logger.warning(f"Schema '{self.source}' contains circular references")
            logger.warning("Circular $ref values are replaced and their targets will not be validated")

        schema = self._materialize(document, root, ())
        return ResolutionResult(schema=schema, replaced_references=self.replaced,
                                edges=list(self.edges.values()))

    # ------------------------------------------------------------------
    # Pass 1: cycle detection
    # ------------------------------------------------------------------

    def _detect_cycles(self, node: Any, location: RefTarget, path: NodePath,
                       stack: Tuple[RefTarget, ...]) -> None:
        if isinstance(node, dict):
            if "$ref" in node:
                ref = node["$ref"]
                if not isinstance(ref, str):
                    raise ReferenceResolutionError(self.source, repr(ref), "$ref must be a string")
                target = self._locate(ref, location.document)
                target_node = self._node_at(target, ref)
                cyclic = target in stack or target.contains(location)
                self.edges[(path, location)] = RefEdge(path, ref, target, cyclic)
                if not cyclic:
                    self._detect_cycles(target_node, target, path, stack + (target,))
                for key, value in node.items():
                    if key != "$ref":
                        self._detect_cycles(value, location.child(key), path + (key,), stack)
                return
            for key, value in node.items():
                self._detect_cycles(value, location.child(key), path + (key,), stack)
        elif isinstance(node, list):
            for index, item in enumerate(node):
                self._detect_cycles(item, location.child(index), path + (index,), stack)

    # ------------------------------------------------------------------
    # Pass 2: materialization
    # ------------------------------------------------------------------

    def _materialize(self, node: Any, location: RefTarget, path: NodePath) -> Any:
        if isinstance(node, dict):
            if "$ref" in node:
                edge = self.edges[(path, location)]
                if edge.cyclic or self.resolver.force_replace:
                    return self._replace(edge)
                expanded = self._materialize(self._node_at(edge.target, edge.ref), edge.target, path)
                siblings = {key: self._materialize(value, location.child(key), path + (key,))
                            for key, value in node.items() if key != "$ref"}
                if siblings and isinstance(expanded, dict):
                    expanded = {**expanded, **siblings}
                return expanded
            return {key: self._materialize(value, location.child(key), path + (key,))
                    for key, value in node.items()}
        if isinstance(node, list):
            return [self._materialize(item, location.child(index), path + (index,))
                    for index, item in enumerate(node)]
        return node

    def _replace(self, edge: RefEdge) -> Dict[str, Any]:
        policy = self.resolver.policy
        dotted = format_path(edge.path)
        self.replaced[dotted] = edge.ref

        label = {"objectid": "Object ID", "uri": "URI"}.get(policy, "an object")
        logger.warning(f" \\_ {os.path.basename(self.source)}: Reference to {edge.ref} "
                       f"at {dotted or '<root>'} converted to {label}")
        return replacement_for(edge.ref, policy)

    # ------------------------------------------------------------------
    # Document loading and pointer navigation
    # ------------------------------------------------------------------

    def _locate(self, ref: str, base_document: str) -> RefTarget:
        address, _, fragment = ref.partition("#")
        fragment = unquote(fragment)
        if fragment and not fragment.startswith("/"):
            raise ReferenceResolutionError(self.source, ref, "only JSON pointer fragments are supported")

        if not address:
            return RefTarget(base_document, fragment)

        parsed = urlparse(address)
        if parsed.scheme in ("http", "https"):
            return RefTarget(address, fragment)
        if _is_url(base_document):
            return RefTarget(urljoin(base_document, address), fragment)
        if parsed.scheme == "file":
            return RefTarget(str(Path(url2pathname(parsed.path)).resolve()), fragment)

        base_dir = os.path.dirname(base_document)
        return RefTarget(str(Path(base_dir, address).resolve()), fragment)

    def _node_at(self, target: RefTarget, ref: str) -> Any:
        node = self._load_document(target.document, ref)
        if not target.pointer:
            return node

        for raw in target.pointer.split("/")[1:]:
            token = _unescape_pointer_token(raw)
            if isinstance(node, dict) and token in node:
                node = node[token]
            elif isinstance(node, list) and token.isdigit() and int(token) < len(node):
                node = node[int(token)]
            else:
                raise ReferenceResolutionError(
                    self.source, ref, f"pointer '{target.pointer}' not found in {target.document}"
                )
        return node

    def _load_document(self, document: str, ref: Optional[str]) -> Any:
        if document in self.documents:
            return self.documents[document]

        if _is_url(document):
            content = self._fetch(document, ref)
        else:
            try:
                with open(document, "r", encoding="utf-8") as f:
                    content = json.load(f)
            except FileNotFoundError:
                raise ReferenceResolutionError(self.source, ref, f"file not found: {document}")
            except json.JSONDecodeError as e:
                raise ReferenceResolutionError(
                    self.source, ref, f"invalid JSON in {document}: {e.msg} (line {e.lineno})"
                ) from e
            except OSError as e:
                raise ReferenceResolutionError(self.source, ref, f"cannot read {document}: {e}") from e

        logger.debug(f"Loaded schema document {document}")
        self.documents[document] = content
        return content

    def _fetch(self, url: str, ref: Optional[str]) -> Any:
        try:
            response = requests.get(url, timeout=self.resolver.http_timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            raise ReferenceResolutionError(self.source, ref, f"cannot fetch {url}: {e}") from e
        except ValueError as e:
            raise ReferenceResolutionError(self.source, ref, f"invalid JSON from {url}") from e


def _is_url(document: str) -> bool:
    return urlparse(document).scheme in ("http", "https")
