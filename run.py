#!/usr/bin/env python3
"""
CLI entry point for the Rental Turnover Automation system.
"""
from src.main import main

if __name__ == "__main__":
    main()
