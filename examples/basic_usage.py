#!/usr/bin/env python3
"""
Example: Basic usage of arpsweep package

This example demonstrates the three ways to drive a neighbor table query:
  - Pattern 1: Direct call (platform loaded on first use)
  - Pattern 2: Context manager (platform loaded on entry, released on exit)
  - Pattern 3: Sweep a block first, then read the table for that block

Pattern 3 sends ICMP echo requests and needs administrator/root privileges
for raw sockets.
"""

import sys


def pattern1_single_query():
    """Pattern 1: Direct Call - Recommended for single queries"""
    print("\nPattern 1: Direct Call (Single Query)")
    print("-" * 70)

    from arpsweep.neighbor_info import NeighborTableQuery

    table = NeighborTableQuery().fetch()

    print(f"Found {len(table)} neighbor entries")
    for entry in table[:5]:
        print(f"  {entry}  [{entry.entry_type.name}] on {entry.ifname}")


def pattern2_context_manager():
    """Pattern 2: Context Manager - Recommended for repeated queries"""
    print("\nPattern 2: Context Manager (Repeated Queries)")
    print("-" * 70)

    from arpsweep.neighbor_info import NeighborTableQuery, RowType

    with NeighborTableQuery(order=False) as ntq:
        first = ntq.fetch()
        second = ntq.fetch()

    dynamic = [e for e in second if e.entry_type is RowType.DYNAMIC]
    print(f"First read: {len(first)} entries, second read: {len(second)} entries")
    print(f"Dynamic entries: {len(dynamic)}")


def pattern3_sweep(block):
    """Pattern 3: Sweep a block, then read its entries"""
    print(f"\nPattern 3: Sweep {block}")
    print("-" * 70)

    from arpsweep.address_range import parse_block
    from arpsweep.echo_probe import EchoProber
    from arpsweep.sweep import run_sweep

    result = run_sweep(parse_block(block), prober=EchoProber(timeout=0.5))

    print(f"Probed {result['probed']} addresses, "
          f"{len(result['probe_failures'])} sends failed")
    for entry in result['table']:
        print(f"  {entry}")


def main():
    print("arpsweep Package Usage Examples")
    print("=" * 70)

    try:
        pattern1_single_query()
        pattern2_context_manager()
        if len(sys.argv) > 1:
            pattern3_sweep(sys.argv[1])

        print("\n" + "=" * 70)
        print("✓ All patterns demonstrated successfully!")

    except ImportError as e:
        print(f"\n✗ Import error: {e}")
        print("  Install arpsweep package first: pip install arpsweep")
        sys.exit(1)
    except Exception as e:
        print(f"\n✗ Error: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()
