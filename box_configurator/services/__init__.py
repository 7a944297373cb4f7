"""
Services for the Box Sale Configurator.

Configuration editing and NetSuite submission, built on the storage
repositories and the estimate gateway.
"""
