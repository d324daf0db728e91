"""
Run the per-file polarisation analysis on a local Dask cluster.

Each input file becomes one delayed task; the histogram registries come
back to the client in input order and are merged there.
"""

from dask.distributed import Client, LocalCluster
from dask import delayed


def create_local_client(n_workers=4, threads_per_worker=1):
    """
    Start a thread-based LocalCluster and connect a client to it.

    Returns
    -------
    dask.distributed.Client
    """
    # thread workers: registries are handed back without pickling
    cluster = LocalCluster(
        n_workers=n_workers,
        threads_per_worker=threads_per_worker,
        processes=False,
    )
    return Client(cluster)


def map_files(client, filenames, process_function, config):
    """
    One delayed call of ``process_function(filename, config, index)`` per
    file, where ``index`` is the position of the file in ``filenames``
    and seeds its random stream.
    """
    return [
        delayed(process_function)(filename, config, index)
        for index, filename in enumerate(filenames)
    ]


def compute_tasks(client, tasks):
    """
    Run the delayed tasks on the client and gather their results in order.
    """
    futures = client.compute(tasks)
    return client.gather(futures)
