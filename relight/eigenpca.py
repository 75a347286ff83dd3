"""Principal component basis from a matrix of records."""

from __future__ import annotations

import numpy as np


class PCA:
    """Collects records row by row and finds their principal directions."""

    def __init__(self, num_vars: int = 0, n_records: int = 0) -> None:
        self.records = np.zeros((0, 0))
        self.transform = np.zeros((0, 0))
        self.resize(num_vars, n_records)

    def resize(self, num_vars: int, n_records: int) -> None:
        self.records = np.zeros((n_records, num_vars))

    def set_record(self, row: int, record) -> None:
        values = np.asarray(record, dtype=float)
        if values.shape != (self.records.shape[1],):
            raise ValueError(
                f"Record has {values.size} values, expected {self.records.shape[1]}"
            )
        self.records[row] = values

    def _check_components(self, n: int) -> None:
        if n < 0 or n > self.records.shape[1]:
            raise ValueError(f"Number of components out of range: {n}")

    def solve(self, n: int) -> None:
        """Keep the n eigenvectors of the covariance with largest eigenvalues."""
        self._check_components(n)
        rows = self.records.shape[0]
        if rows < 2:
            raise ValueError("At least two records are needed")
        cov = self.records.T @ self.records / (rows - 1)
        _, vectors = np.linalg.eigh(cov)
        self.transform = vectors[:, vectors.shape[1] - n:][:, ::-1].copy()

    def solve_svd(self, n: int) -> None:
        """Keep the first n right singular vectors of the records."""
        self._check_components(n)
        _, _, vt = np.linalg.svd(self.records, full_matrices=False)
        self.transform = vt.T[:, :n].copy()

    def proj(self) -> np.ndarray:
        return self.transform