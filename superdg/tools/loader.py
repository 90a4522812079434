import pickle
from pathlib import Path

import pandas as pd

from .array_management import VariableIndexMap
from .snapshots import Snapshots
from .yaml_helper import read_yaml


class OutputLoader:

    def __init__(self, base: Path, verbose: bool = True):
        """
        Load simulation output from the specified base directory.

        Args:
            base: The base directory for the simulation output.
            verbose: Whether to print a message after loading.
        """
        self.base = Path(base)

        if not self.base.exists():
            raise FileNotFoundError(f"Base directory {base} does not exist.")

        self.config = self.load_config()

        self.variables = VariableIndexMap(**self.config["variables"])

        self.mesh = self.load_mesh()
        self.minisnapshots = self.load_minisnapshots()
        self.snapshots = self.load_snapshots()

        if verbose:
            print(f'Successfully read simulation output from "{self.base}"')

    def load_config(self) -> dict:
        return read_yaml(self.base / "config.yaml")

    def load_mesh(self) -> dict:
        """
        Load the mesh description and node geometry from 'output_dir/mesh.pkl'.
        """
        with open(self.base / "mesh.pkl", "rb") as f:
            return pickle.load(f)

    def load_minisnapshots(self) -> dict:
        """
        Load the minisnapshots from 'output_dir/snapshots/minisnapshots.pkl'.
        """
        with open(self.base / "snapshots" / "minisnapshots.pkl", "rb") as f:
            return pickle.load(f)

    def load_snapshots(self) -> Snapshots:
        """
        Load the snapshots from 'output_dir/snapshots'.
        """
        return Snapshots.load(self.base / "snapshots")

    def load_timings(self) -> pd.DataFrame:
        return pd.read_csv(self.base / "timings.csv")

    def print_timings(self):
        print(self.load_timings().to_string(index=False))
