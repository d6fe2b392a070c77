"""
Schema Loader - Builds the Model Registry From a Schema Directory.

Every ``*.json`` file under the schema directory (recursively) becomes one
model. Each file goes through the same pipeline:

    collection_name_for() -> ReferenceResolver.resolve() -> build_model()

Files are processed in parallel on a thread pool and joined into a
ModelRegistry keyed by model name.

Loading Rules:
    - The schema directory must exist and be a directory, otherwise
      SchemaDirectoryInvalid is raised before any file is read.
    - One failing file fails the whole load. Pending files are cancelled.
    - The registry is built once. Later (and concurrent) calls to load()
      return the same registry without scanning the filesystem again.
    - Two files deriving the same model name: the one that finishes last
      wins and a warning is logged. With strict_model_names enabled this
      is a DuplicateModelError instead.
    - Custom hooks are passed to the loader (hooks={"Author": {"pre_delete": [fn]}})
      and attached as each model is built. Models in a registry have frozen hooks.
"""
import logging
import os
import threading
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterator, List, Optional, Sequence, Union

from .builder import Hook, Model, build_model
from .errors import DuplicateModelError, SchemaDirectoryInvalid, UnknownModelError
from .naming import collection_name_for, model_name_for
from .resolver import DEFAULT_POLICY, ReferenceResolver

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION = "entities"
DEFAULT_MAX_WORKERS = 8


class ModelRegistry(Mapping):
    """Read-only mapping of model name to Model.

    Built once by SchemaLoader.load() and never modified afterwards, so it
    can be shared between threads and request handlers without locking.
    The hooks of every model are frozen on the way in.
    """

    def __init__(self, models: Mapping[str, Model], schema_dir: str, default_collection: str):
        for model in models.values():
            model.freeze_hooks()
        self._models = MappingProxyType(dict(models))
        self.schema_dir = schema_dir
        self.default_collection = default_collection

    def __getitem__(self, name: str) -> Model:
        try:
            return self._models[name]
        except KeyError:
            raise UnknownModelError(name) from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._models)

    def __len__(self) -> int:
        return len(self._models)

    def __repr__(self) -> str:
        return f"ModelRegistry({sorted(self._models)!r})"

    @property
    def collections(self) -> List[str]:
        return sorted({model.collection_name for model in self._models.values()})

    def in_collection(self, collection_name: str) -> List[Model]:
        return [model for model in self._models.values() if model.collection_name == collection_name]


class SchemaLoader:
    """Loads a schema directory into a ModelRegistry, once.

    Args:
        schema_dir: Root of the schema directory tree
        default_collection: Collection for schemas directly under the root
        policy: Replacement policy for circular references (object, objectid, uri)
        force_replace: Replace every reference instead of only circular ones
        strict_model_names: Raise DuplicateModelError on model name collisions
        max_workers: Thread pool size for processing files
        hooks: Extra hooks per model name, as {model_name: {event: [hook, ...]}}
    """

    def __init__(self, schema_dir: Union[str, os.PathLike], default_collection: str = DEFAULT_COLLECTION,
                 policy: Optional[str] = DEFAULT_POLICY, force_replace: bool = False,
                 strict_model_names: bool = False, max_workers: int = DEFAULT_MAX_WORKERS,
                 hooks: Optional[Mapping[str, Mapping[str, Sequence[Hook]]]] = None):
        self.schema_dir = Path(schema_dir)
        self.default_collection = default_collection
        self.strict_model_names = strict_model_names
        self.max_workers = max(1, int(max_workers))
        self.resolver = ReferenceResolver(policy=policy, force_replace=force_replace)
        self.hooks = hooks or {}

        self._lock = threading.Lock()
        self._registry: Optional[ModelRegistry] = None

    @classmethod
    def from_settings(cls, settings) -> "SchemaLoader":
        """Create a loader from a config.SchemaSettings instance."""
        return cls(
            settings.directory,
            default_collection=settings.default_collection,
            policy=settings.replace_circular_ref,
            force_replace=settings.replace_all_refs,
            strict_model_names=settings.strict_model_names,
            max_workers=settings.max_workers,
        )

    @property
    def loaded(self) -> bool:
        return self._registry is not None

    def load(self) -> ModelRegistry:
        """Return the model registry, building it on the first call.

        Raises:
            SchemaDirectoryInvalid: If the schema directory is missing or not a directory
            ReferenceResolutionError: If any schema file cannot be resolved
            DuplicateModelError: On a model name collision in strict mode
        """
        if self._registry is not None:
            return self._registry

        with self._lock:
            if self._registry is None:
                self._check_directory()
                self._registry = self._load_all()
        return self._registry

    def discover(self) -> List[Path]:
        """Return every schema file under the schema directory, sorted."""
        return sorted(path for path in self.schema_dir.rglob("*.json") if path.is_file())

    def load_file(self, path: Union[str, os.PathLike]) -> Model:
        """Run the naming, resolution and build pipeline for one schema file."""
        path = Path(path).resolve()
        collection_name = collection_name_for(path, self.schema_dir, self.default_collection)
        name = model_name_for(path)
        resolution = self.resolver.resolve(path)
        model = build_model(resolution, name, collection_name, source_path=str(path))
        for event, hooks in self.hooks.get(name, {}).items():
            for hook in hooks:
                model.add_hook(event, hook)
        return model

    def _check_directory(self) -> None:
        root = self.schema_dir.resolve()
        if not root.exists():
            raise SchemaDirectoryInvalid(f"Schema directory not found: {root}")
        if not root.is_dir():
            raise SchemaDirectoryInvalid(f"Schema directory is not a directory: {root}")

    def _load_all(self) -> ModelRegistry:
        files = self.discover()
        logger.info(f"Loading {len(files)} schema file(s) from {self.schema_dir.resolve()}")

        models: Dict[str, Model] = {}
        executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="schema-loader")
        try:
            futures = {executor.submit(self.load_file, path): path for path in files}
            for future in as_completed(futures):
                path = futures[future]
                try:
                    model = future.result()
                except Exception as e:
                    logger.error(f"Error loading schema '{path}': {e}")
                    raise

                existing = models.get(model.name)
                if existing is not None:
                    if self.strict_model_names:
                        raise DuplicateModelError(
                            f"Model name '{model.name}' is derived from both "
                            f"{existing.source_path} and {model.source_path}"
                        )
                    logger.warning(f"Model '{model.name}' from {existing.source_path} "
                                   f"replaced by {model.source_path}")
                models[model.name] = model
                logger.info(f"Loaded model '{model.name}' (collection: {model.collection_name})")
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

        return ModelRegistry(models, str(self.schema_dir.resolve()), self.default_collection)
