from setuptools import setup, find_namespace_packages

setup(
    name='nus3bank-tools',
    version='0.1.0',
    packages=find_namespace_packages(include=['file_handlers', 'file_handlers.*', 'utils', 'tools']),
    py_modules=['settings'],
    install_requires=['PySide6'],
    extras_require={'test': ['pytest']},
    python_requires='>=3.9',
)
