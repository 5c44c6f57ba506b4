from importlib import import_module

modules = [
    'profiles',
    'shops',
    'documents',
    'inspections',
    'reviews',
    'notifications',
    'compliance',
    'audit',
    'functions',
]

for m in modules:
    import_module(f'.{m}', __name__)

__all__ = modules
