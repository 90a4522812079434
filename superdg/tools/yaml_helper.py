from __future__ import annotations

from pathlib import Path
from typing import IO, Any, List, Tuple, Union, cast

import numpy as np
import yaml
from yaml.nodes import Node, SequenceNode

TUP_TAG = "!tuple"


class ConfigDumper(yaml.SafeDumper):
    # no anchors/aliases like &id001/*id001
    def ignore_aliases(self, data: Any) -> bool:  # type: ignore[override]
        return True


class ConfigLoader(yaml.SafeLoader):
    pass


def _repr_flow_list(dumper: ConfigDumper, value: List[Any]) -> Node:
    return dumper.represent_sequence("tag:yaml.org,2002:seq", value, flow_style=True)


def _repr_tuple(dumper: ConfigDumper, value: Tuple[Any, ...]) -> Node:
    return dumper.represent_sequence(TUP_TAG, list(value), flow_style=True)


def _repr_ndarray(dumper: ConfigDumper, value: np.ndarray) -> Node:
    return _repr_flow_list(dumper, value.tolist())


def _repr_np_float(dumper: ConfigDumper, value: np.floating) -> Node:
    return dumper.represent_float(float(value))


def _repr_np_int(dumper: ConfigDumper, value: np.integer) -> Node:
    return dumper.represent_int(int(value))


def _repr_np_bool(dumper: ConfigDumper, value: np.bool_) -> Node:
    return dumper.represent_bool(bool(value))


ConfigDumper.add_representer(list, _repr_flow_list)
ConfigDumper.add_representer(tuple, _repr_tuple)
ConfigDumper.add_representer(np.ndarray, _repr_ndarray)
ConfigDumper.add_multi_representer(np.floating, _repr_np_float)
ConfigDumper.add_multi_representer(np.integer, _repr_np_int)
ConfigDumper.add_representer(np.bool_, _repr_np_bool)


def _construct_tuple(loader: ConfigLoader, node: SequenceNode) -> Tuple[Any, ...]:
    return tuple(loader.construct_sequence(node))


ConfigLoader.add_constructor(TUP_TAG, _construct_tuple)


def yaml_dump(obj: Any) -> str:
    # dicts stay block style; sequences are forced flow by representers
    return yaml.dump(obj, Dumper=ConfigDumper, sort_keys=False, default_flow_style=None)


def yaml_load(src: Union[str, IO[str]]) -> Any:
    if hasattr(src, "read"):
        text = cast(IO[str], src).read()
    else:
        text = cast(str, src)
    return yaml.load(text, Loader=ConfigLoader)


def write_yaml(path: Union[str, Path], obj: Any):
    with open(path, "w") as f:
        f.write(yaml_dump(obj))


def read_yaml(path: Union[str, Path]) -> Any:
    with open(path, "r") as f:
        return yaml_load(f)
