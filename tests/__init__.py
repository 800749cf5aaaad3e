"""
HLSRelay Test Suite

Test Categories:
- unit/: Fast, isolated unit tests
- streaming/: Supervisor loop tests with engine doubles
- integration/: Application, HTTP and end-to-end channel scenarios
"""
