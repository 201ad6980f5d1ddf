"""Command-line tools for preparing tar datasets."""

from tarstream.tools.make_index import collect_samples, create_index, split_member_name

__all__ = ["collect_samples", "create_index", "split_member_name"]
