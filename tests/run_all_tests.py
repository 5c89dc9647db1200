"""
Test runner for sofapy.
Runs the whole suite, or only the hourly SOFA pipeline tests.
"""
import argparse
import os
import sys

import pytest

TESTS_DIR = os.path.dirname(__file__)


def run_tests(category=None):
    """
    Run tests based on the specified category.

    Args:
        category (str, optional): 'sofa' for the scoring pipeline, 'utils' for
            config/io/logging and the pipeline, None for everything.
    """
    if category == 'sofa':
        test_path = os.path.join(TESTS_DIR, 'utils', 'sofa')
    elif category == 'utils':
        test_path = os.path.join(TESTS_DIR, 'utils')
    else:
        test_path = TESTS_DIR

    return pytest.main(["-v", test_path])


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description='Run sofapy tests')
    parser.add_argument('--category', choices=['sofa', 'utils', 'all'],
                        default='all', help='Test category to run')

    args = parser.parse_args()
    sys.exit(run_tests(args.category if args.category != 'all' else None))
