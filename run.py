"""Run the expo-supervisor service."""

from expo_supervisor.__main__ import main

if __name__ == "__main__":
    main()
