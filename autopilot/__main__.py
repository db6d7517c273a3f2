"""python -m autopilot"""
from autopilot.cli import run

if __name__ == "__main__":
    run()
