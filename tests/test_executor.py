import pytest
pytest.importorskip("dask")
pytest.importorskip("distributed")
from charmpol.distributed import executor


def test_create_local_client_uses_localcluster_and_client(monkeypatch):
    created = {}

    class DummyCluster:
        def __init__(self, n_workers, threads_per_worker, processes):
            created["n_workers"] = n_workers
            created["threads_per_worker"] = threads_per_worker
            created["processes"] = processes

    class DummyClient:
        def __init__(self, cluster):
            created["cluster"] = cluster

    monkeypatch.setattr(executor, "LocalCluster", DummyCluster)
    monkeypatch.setattr(executor, "Client", DummyClient)

    client = executor.create_local_client(n_workers=2, threads_per_worker=3)

    assert isinstance(client, DummyClient)
    assert created["n_workers"] == 2
    assert created["threads_per_worker"] == 3
    assert created["processes"] is False


def test_map_files_creates_delayed_tasks_with_file_index():
    filenames = ["file1.root", "file2.root"]
    config = {"answer": 42}

    def process_function(fname, cfg, index):
        # Stand-in for the real per-file analysis
        return fname, cfg["answer"], index

    tasks = executor.map_files(
        client=None,
        filenames=filenames,
        process_function=process_function,
        config=config,
    )

    assert len(tasks) == len(filenames)

    results = [task.compute(scheduler="synchronous") for task in tasks]
    assert results == [("file1.root", 42, 0), ("file2.root", 42, 1)]


def test_compute_tasks_gathers_in_order():
    calls = {}

    class DummyClient:
        def compute(self, tasks):
            calls["tasks"] = tasks
            return ["future-a", "future-b"]

        def gather(self, futures):
            return [f.upper() for f in futures]

    out = executor.compute_tasks(DummyClient(), ["a", "b"])

    assert calls["tasks"] == ["a", "b"]
    assert out == ["FUTURE-A", "FUTURE-B"]
