from pathlib import Path


def bundle_dir(root: Path, bundle: str) -> Path:
    return (root / bundle).resolve()


def bundle_table_path(root: Path, bundle: str, name: str, file: str | None = None) -> Path:
    suffix = ".gpkg" if name in ("prediction_grid", "tracks") else ".parquet"
    return bundle_dir(root, bundle) / (file or f"{name}{suffix}")


def interim_dir(root: Path, dataset: str) -> Path:
    return root / "data" / "interim" / dataset


def tables_dir(root: Path, dataset: str) -> Path:
    return root / "results" / "tables" / dataset


def figures_dir(root: Path, dataset: str) -> Path:
    return root / "results" / "figures" / dataset


def summary_path(root: Path, dataset: str) -> Path:
    return root / "results" / "summaries" / f"{dataset}_summary.json"
