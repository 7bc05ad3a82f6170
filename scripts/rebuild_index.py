#!/usr/bin/env python3
"""
Index Rebuild Utility
Rebuilds the HNSW vector index from the canonical embeddings table, e.g. after
a corrupted snapshot or a change of index parameters.
"""

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from memstore.core.config import MEMORY_DB_PATH
from memstore.core.errors import MemoryStoreError
from memstore.core.memory_store import MemoryStore


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Rebuild the vector index from stored embeddings",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                              # Rebuild the index of MEMORY_DB_PATH
  %(prog)s --db-path ./data/memory.db   # Rebuild a specific store

Embeddings are not recomputed; the index is rebuilt from the vectors stored
in SQLite and snapshotted back into the same file.
        """
    )

    parser.add_argument(
        "--db-path",
        default=MEMORY_DB_PATH,
        help=f"Path to the memory database (default: {MEMORY_DB_PATH})"
    )

    args = parser.parse_args(argv)

    if not Path(args.db_path).exists():
        print(f"ERROR: No memory database at {args.db_path}")
        return 1

    print("Starting vector index rebuild...")

    # Reranking is not needed to rebuild
    store = MemoryStore(args.db_path, rerank_provider=None)
    try:
        store.initialize()
        print(f"✓ Opened memory store at {args.db_path}")

        count = store.rebuild_index()
        print(f"✓ Successfully rebuilt index with {count} vectors")

        health = store.health()
        if health["indexed_vectors"] != health["embeddings"]:
            print(f"WARNING: Index holds {health['indexed_vectors']} vectors for {health['embeddings']} embeddings")
            return 1
        print(f"✓ Verified {health['indexed_vectors']} vectors against {health['memories']} memories")
    except MemoryStoreError as e:
        print(f"ERROR: Index rebuild failed: {e}")
        return 1
    finally:
        store.close()

    print("Index rebuild complete!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
