"""Wiring of the orchestration objects used by the API and CLI adapters.

`build_services` reads the environment-backed configuration and assembles one
shared set of collaborators (workflow client, object store, library store,
initiator, resolvers and the configured strategy). Tests pass explicit
configuration or replace the whole container.
"""

from dataclasses import dataclass

from manga_tutor.core.initiator import GenerationInitiator
from manga_tutor.core.status_resolver import StatusResolver
from manga_tutor.core.strategy import GenerationStrategy, select_strategy
from manga_tutor.core.streaming import StreamingResolver
from manga_tutor.library.store import LIBRARY_DB_PATH, LibraryStore
from manga_tutor.storage.object_store import ObjectStore, StorageConfig
from manga_tutor.storage.proxy import ProxyConfig
from manga_tutor.workflow.client import WorkflowClient
from manga_tutor.workflow.provider_config import GENERATION_MODE, WorkflowConfig


@dataclass
class Services:
    workflow_config: WorkflowConfig
    proxy_config: ProxyConfig
    library: LibraryStore
    object_store: ObjectStore
    initiator: GenerationInitiator
    resolver: StatusResolver
    streaming_resolver: StreamingResolver
    strategy: GenerationStrategy


def build_services(
    workflow_config: WorkflowConfig | None = None,
    storage_config: StorageConfig | None = None,
    proxy_config: ProxyConfig | None = None,
    db_path: str = LIBRARY_DB_PATH,
    mode: str = GENERATION_MODE,
) -> Services:
    """Assemble the default collaborators.

    Raises:
        ValueError: For an unknown generation mode.
    """
    workflow_config = workflow_config or WorkflowConfig()
    client = WorkflowClient(workflow_config)
    library = LibraryStore(db_path)
    object_store = ObjectStore(storage_config or StorageConfig())

    initiator = GenerationInitiator(workflow_config, client=client, library=library)
    resolver = StatusResolver(client, object_store=object_store, library=library)
    streaming_resolver = StreamingResolver(
        workflow_config, client=client, object_store=object_store, library=library
    )

    return Services(
        workflow_config=workflow_config,
        proxy_config=proxy_config or ProxyConfig(),
        library=library,
        object_store=object_store,
        initiator=initiator,
        resolver=resolver,
        streaming_resolver=streaming_resolver,
        strategy=select_strategy(mode, initiator, resolver, streaming_resolver),
    )
