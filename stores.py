"""
Stores Module

One explicit store per collection the console caches (disks, images,
containers, Dockerfile folders, Hub search results). A store only ever holds
an immutable snapshot; writers replace it wholesale (authoritative re-fetch)
or apply a narrow patch, and subscribers are told about every replacement.
Readers such as search/filter never mutate a store.
"""

from typing import Callable, Iterable, List, Tuple

from models import DockerContainer, DockerImage, Snapshot
from utils import logger

Subscriber = Callable[[Snapshot], None]


class CollectionStore:
    """Holds the current snapshot of one collection"""

    def __init__(self, collection: str):
        self.collection = collection
        self._snapshot = Snapshot(collection=collection, version=0, items=())
        self._subscribers: List[Subscriber] = []

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def items(self) -> Tuple:
        return self._snapshot.items

    @property
    def loaded(self) -> bool:
        return self._snapshot.version > 0

    def replace(self, items: Iterable) -> Snapshot:
        """Install a fresh authoritative copy of the collection"""
        return self._publish(tuple(items))

    def patch(self, transform: Callable[[Tuple], Iterable]) -> Snapshot:
        """Derive the next snapshot from the current one"""
        return self._publish(tuple(transform(self._snapshot.items)))

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register for snapshot replacements; returns an unsubscribe callable"""
        self._subscribers.append(subscriber)

        def unsubscribe():
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def _publish(self, items: Tuple) -> Snapshot:
        self._snapshot = Snapshot(
            collection=self.collection,
            version=self._snapshot.version + 1,
            items=items,
        )
        for subscriber in list(self._subscribers):
            try:
                subscriber(self._snapshot)
            except Exception as e:
                logger.warning(
                    "Snapshot subscriber failed",
                    collection=self.collection,
                    error=str(e),
                )
        return self._snapshot


def filter_images(images: Iterable[DockerImage], term: str = "") -> List[DockerImage]:
    """Case-insensitive match on repository or tag"""
    term = (term or "").lower()
    return [
        image
        for image in images
        if term in image.repository.lower() or term in image.tag.lower()
    ]


def filter_containers(
    containers: Iterable[DockerContainer], term: str = "", only_running: bool = False
) -> List[DockerContainer]:
    """Case-insensitive match on name or image, optionally running ones only"""
    term = (term or "").lower()
    return [
        container
        for container in containers
        if (not only_running or container.status == "running")
        and (term in container.name.lower() or term in container.image.lower())
    ]
