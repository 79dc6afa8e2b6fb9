"""
Services package.
Each module exposes a service class and a module-level instance.
"""
