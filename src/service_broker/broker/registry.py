"""
Service registry holding the broker's service definitions.

Definitions are validated when they are registered: the operator
configuration for the service is attached and its custom plans are checked,
so a service that would fail at request time never enters the registry.

Features:
- Register definitions with duplicate detection by name and by id
- Look up services by id or by name
- Hide services disabled by the operator or carrying a lifecycle tag whose
  toggle is off
- Materialize the catalog
- Load definitions from a directory of YAML files
- One shared Evaluator, so ``counter.next()`` is unique across requests
"""

import logging
from collections.abc import Mapping
from pathlib import Path

from ..config import ENABLE_CATALOG_SCHEMAS, LIFECYCLE_TAG_TOGGLES
from ..exceptions import DuplicateServiceError, ServiceDefinitionError, ServiceNotFoundError
from ..interpolation import Evaluator
from .catalog import CatalogService
from .loader import LoadResult, ProviderFactory, load_service_definition_from_file
from .service_config import ServiceConfigMap
from .service_definition import ServiceDefinition

logger = logging.getLogger(__name__)


class ServiceRegistry:
    """
    Central registry of service definitions.

    Example:
        registry = ServiceRegistry(service_config=ServiceConfigMap.parse(raw))
        registry.register(cache_definition)

        catalog = registry.catalog()
        definition = registry.get_service_by_id(details.service_id)
        plan = definition.get_plan_by_id(details.plan_id)
        vc = definition.provision_variables(instance_id, details, plan, registry.evaluator)
    """

    def __init__(
        self,
        service_config: ServiceConfigMap | None = None,
        toggle_overrides: Mapping[str, bool] | None = None,
        evaluator: Evaluator | None = None,
    ) -> None:
        self._service_config = service_config or ServiceConfigMap({})
        self._toggle_overrides = dict(toggle_overrides or {})
        self.evaluator = evaluator or Evaluator()

        self._by_name: dict[str, ServiceDefinition] = {}
        self._by_id: dict[str, ServiceDefinition] = {}

    def register(self, definition: ServiceDefinition) -> ServiceDefinition:
        """
        Validate and register a service definition.

        Args:
            definition: Definition to register

        Returns:
            The registered definition with its operator configuration attached

        Raises:
            DuplicateServiceError: If a service with the same name or id exists
            ServiceDefinitionError: If the operator's custom plans are invalid
        """
        if definition.name in self._by_name:
            raise DuplicateServiceError("name", definition.name)
        if definition.id in self._by_id:
            raise DuplicateServiceError("id", definition.id)

        configured = definition.with_operator_config(self._service_config.get(definition.id))
        try:
            entry = configured.catalog_entry(schemas_enabled=self.schemas_enabled())
        except ValueError as e:
            raise ServiceDefinitionError(definition.name, str(e)) from e

        plan_ids = [plan.id for plan in entry.plans]
        duplicates = sorted({pid for pid in plan_ids if plan_ids.count(pid) > 1})
        if duplicates:
            raise ServiceDefinitionError(
                definition.name, f"custom plans reuse existing plan ids: {duplicates}"
            )

        self._by_name[configured.name] = configured
        self._by_id[configured.id] = configured
        logger.info(
            f"Registered service: {configured.name} ({configured.id}) "
            f"with {len(entry.plans)} plan(s)"
        )
        return configured

    def schemas_enabled(self) -> bool:
        return ENABLE_CATALOG_SCHEMAS.is_active(self._toggle_overrides)

    def get_service_by_id(self, service_id: str) -> ServiceDefinition:
        """
        Raises:
            ServiceNotFoundError: If no service has that id
        """
        try:
            return self._by_id[service_id]
        except KeyError:
            raise ServiceNotFoundError(service_id) from None

    def get_service_by_name(self, name: str) -> ServiceDefinition:
        """
        Raises:
            ServiceNotFoundError: If no service has that name
        """
        try:
            return self._by_name[name]
        except KeyError:
            raise ServiceNotFoundError(name) from None

    def get_all_services(self) -> list[ServiceDefinition]:
        """All registered services sorted by name, enabled or not."""
        return [self._by_name[name] for name in sorted(self._by_name)]

    def is_service_enabled(self, definition: ServiceDefinition) -> bool:
        """Whether a service is visible in the catalog.

        A service is hidden when the operator disabled it or when any of its
        tags is a lifecycle tag whose toggle is inactive.
        """
        if not definition.is_enabled():
            return False
        for tag in definition.tags:
            toggle = LIFECYCLE_TAG_TOGGLES.get(tag)
            if toggle is not None and not toggle.is_active(self._toggle_overrides):
                return False
        return True

    def get_enabled_services(self) -> list[ServiceDefinition]:
        enabled = []
        for definition in self.get_all_services():
            if self.is_service_enabled(definition):
                enabled.append(definition)
            else:
                logger.debug(f"Service '{definition.name}' is disabled")
        return enabled

    def catalog(self) -> list[CatalogService]:
        """Catalog entries of the enabled services."""
        schemas_enabled = self.schemas_enabled()
        return [
            definition.catalog_entry(schemas_enabled=schemas_enabled)
            for definition in self.get_enabled_services()
        ]

    def load_from_directory(
        self,
        directory: str | Path,
        providers: Mapping[str, ProviderFactory] | None = None,
    ) -> LoadResult[int]:
        """
        Register every service definition found in a directory (recursive).

        Definitions are loaded in file name order. An invalid definition stops
        the load, since a broker must not start with part of its catalog.

        Args:
            directory: Directory containing ``*.yaml``/``*.yml`` definitions
            providers: Provider factories by name

        Returns:
            LoadResult.success(count) with the number of registered services
            LoadResult.failure(error_message) if the directory doesn't exist

        Raises:
            ServiceDefinitionError: If a file fails to load or validate
            DuplicateServiceError: If a definition clashes with a registered one
        """
        dir_path = Path(directory)

        logger.info(f"Loading service definitions from directory: {dir_path}")

        if not dir_path.exists():
            error_msg = f"Directory not found: {dir_path}"
            logger.error(error_msg)
            return LoadResult.failure(error_msg)

        if not dir_path.is_dir():
            error_msg = f"Not a directory: {dir_path}"
            logger.error(error_msg)
            return LoadResult.failure(error_msg)

        yaml_files = sorted(list(dir_path.glob("**/*.yaml")) + list(dir_path.glob("**/*.yml")))

        loaded_count = 0
        for yaml_file in yaml_files:
            result = load_service_definition_from_file(yaml_file, providers)
            if not result.is_success:
                raise ServiceDefinitionError(yaml_file.name, result.error or "unknown error")
            self.register(result.unwrap())
            loaded_count += 1

        logger.info(
            f"Successfully loaded {loaded_count} service definitions from {dir_path} "
            f"({len(yaml_files)} YAML files found)"
        )
        return LoadResult.success(loaded_count)

    def __contains__(self, service_id: object) -> bool:
        return service_id in self._by_id

    def __len__(self) -> int:
        return len(self._by_id)


__all__ = ["ServiceRegistry"]
