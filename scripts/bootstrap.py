#!/usr/bin/env python3
"""
Bootstrap core memories.
Seeds an empty store from a JSON file, then runs a verification search.
"""

import argparse
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from memstore.core.config import MEMORY_DB_PATH
from memstore.core.errors import MemoryStoreError
from memstore.core.memory_store import MemoryStore

DEFAULT_MEMORIES_FILE = Path(__file__).parent / "core_memories.json"

# A store with at least this many memories is treated as already bootstrapped
BOOTSTRAP_SKIP_THRESHOLD = 20

VERIFY_QUERY = "How should I structure Python code?"


def load_core_memories(path):
    """Read the memories list from a core memories file."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    memories = data.get("memories")
    if not isinstance(memories, list):
        raise ValueError(f"Invalid {path}: missing 'memories' array")

    print(f"Loaded {len(memories)} memories from {Path(path).name} (v{data.get('version', 'unknown')})")
    return memories


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Seed the memory store with core memories",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                                  # Seed MEMORY_DB_PATH from core_memories.json
  %(prog)s --memories-file team.json        # Seed from another file
  %(prog)s --force                          # Seed even if the store is populated
        """
    )

    parser.add_argument(
        "--db-path",
        default=MEMORY_DB_PATH,
        help=f"Path to the memory database (default: {MEMORY_DB_PATH})"
    )

    parser.add_argument(
        "--memories-file",
        default=str(DEFAULT_MEMORIES_FILE),
        help="JSON file with a 'memories' array"
    )

    parser.add_argument(
        "--force", "-f",
        action="store_true",
        help=f"Seed even if the store already holds {BOOTSTRAP_SKIP_THRESHOLD} or more memories"
    )

    args = parser.parse_args(argv)

    print("Bootstrapping core memories...")

    try:
        core_memories = load_core_memories(args.memories_file)
    except (OSError, ValueError) as e:
        print(f"ERROR: Failed to load core memories: {e}")
        return 1

    store = MemoryStore(args.db_path)
    try:
        store.initialize()
        print(f"✓ Memory store initialized at {args.db_path}")

        existing = store.get_recent_memories(limit=100)
        if len(existing) >= BOOTSTRAP_SKIP_THRESHOLD and not args.force:
            print(f"Found {len(existing)} existing memories")
            print("✓ Core memories already bootstrapped - skipping")
            print(f"To re-bootstrap, delete {args.db_path} or pass --force")
            return 0

        print(f"Found {len(existing)} existing memories, adding core memories...")

        stored = 0
        for memory in core_memories:
            store.store_memory(
                memory["content"],
                memory["type"],
                importance=memory.get("importance", 0.5),
                tags=memory.get("tags"),
                metadata=memory.get("metadata"),
            )
            stored += 1

        print(f"✓ Added {stored} core memories")
        print(f"  Total memories in database: {len(existing) + stored}")

        results = store.search_memories(VERIFY_QUERY, limit=3, min_similarity=0.3)
        print(f"✓ Verification search returned {len(results)} results")
    except (MemoryStoreError, KeyError) as e:
        print(f"ERROR: Bootstrap failed: {e}")
        return 1
    finally:
        store.close()

    print("Bootstrap complete!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
