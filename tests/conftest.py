import sys
import os

# Make the project root (tutoring_rtc, signaling_server) and the shared test
# helpers in this directory importable.
tests_dir = os.path.abspath(os.path.dirname(__file__))
project_root = os.path.abspath(os.path.join(tests_dir, '..'))
for path in (project_root, tests_dir):
    if path not in sys.path:
        sys.path.insert(0, path)
