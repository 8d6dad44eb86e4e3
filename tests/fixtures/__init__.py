"""
Test fixtures package.

Available fixture modules:
- database: credential pool / status store fixtures and row factories
- fakes: in-process content source, translator and submission client
"""
