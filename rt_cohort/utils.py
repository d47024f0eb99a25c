"""
General utilities of the cohort Rt pipeline.
"""
from pathlib import Path

import numpy as np
import pandas as pd
from pathos.pools import ProcessPool


# -------------------------------------------------------------------
# EXECUTION
# -------------------------------------------------------------------

def map_parallel_or_sequential(function, contents, ncpus=1):
    """Applies `function` to each item of `contents`, returning a list
    of results in the same order as the inputs.

    If `ncpus` is 1 (or less), runs sequentially in this process.
    Otherwise, uses a pathos pool of `ncpus` worker processes. Pathos
    serializes with dill, so `function` can be a closure (e.g. a task
    defined inside the caller). Objects referenced by the closure are
    copied into each worker.
    """
    contents = list(contents)
    if ncpus is None or ncpus <= 1 or len(contents) <= 1:
        return [function(item) for item in contents]

    pool = ProcessPool(ncpus=min(ncpus, len(contents)))
    try:
        return pool.map(function, contents)
    finally:
        pool.close()
        pool.join()
        pool.clear()


# -------------------------------------------------------------------
# EXPORT
# -------------------------------------------------------------------

def _to_yaml_value(val):
    """Plain python version of values that yaml.dump (safe) can't
    represent or would write as python-specific tags.
    """
    if isinstance(val, Path):
        return str(val.expanduser())
    if isinstance(val, pd.Timestamp):
        return val.to_pydatetime()  # Loads back as datetime
    if isinstance(val, tuple):
        return list(val)
    if isinstance(val, np.generic):
        return val.item()
    return val


def prepare_dict_for_yaml_export(d: dict, inplace=True):
    """Converts paths, timestamps, tuples and numpy scalars of a
    dictionary (and of its inner dictionaries) into yaml friendly
    objects. If `inplace` is False, the input dictionaries are not
    modified.
    """
    if not inplace:
        d = d.copy()

    for key, val in d.items():
        if isinstance(val, dict):
            d[key] = prepare_dict_for_yaml_export(val, inplace=inplace)
        else:
            d[key] = _to_yaml_value(val)

    return d
