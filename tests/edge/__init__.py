"""
Unit and edge case tests for the condition language, configuration,
store backends, report and command line.
"""
