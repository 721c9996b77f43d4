from models import DockerContainer
from stores import CollectionStore, filter_containers


class TestCollectionStore:
    def test_starts_empty_and_unloaded(self):
        store = CollectionStore("disks")
        assert store.items == ()
        assert not store.loaded

    def test_replace_bumps_version(self):
        store = CollectionStore("disks")
        store.replace(["a"])
        store.replace(["a", "b"])
        assert store.snapshot.version == 2
        assert store.items == ("a", "b")

    def test_patch_derives_from_current(self):
        store = CollectionStore("disks")
        store.replace(["a", "b"])
        store.patch(lambda items: [i for i in items if i != "a"])
        assert store.items == ("b",)

    def test_subscribers_see_every_snapshot(self):
        store = CollectionStore("images")
        seen = []
        unsubscribe = store.subscribe(seen.append)
        store.replace([1])
        unsubscribe()
        store.replace([2])
        assert [s.items for s in seen] == [(1,)]

    def test_failing_subscriber_does_not_block_others(self):
        store = CollectionStore("images")
        seen = []

        def broken(snapshot):
            raise RuntimeError("socket closed")

        store.subscribe(broken)
        store.subscribe(seen.append)
        store.replace(["x"])
        assert len(seen) == 1


class TestFilters:
    def test_empty_term_matches_all(self):
        containers = [
            DockerContainer(id="1", name="web", image="nginx", status="running"),
            DockerContainer(id="2", name="db", image="postgres", status="stopped"),
        ]
        assert filter_containers(containers) == containers
        assert [c.id for c in filter_containers(containers, "POST")] == ["2"]
