from setuptools import setup


setup(
    name="catalog-import",
    version="0.3.0",
    description="Bulk course catalog import: CSV, Excel and JSON parsing, validation, conflict resolution and atomic commit",
    packages=["catalog_import"],
    include_package_data=True,
    python_requires=">=3.10",
    install_requires=[
        "pandas",
        "chardet",
        "openpyxl",
        "pydantic>=2",
        "requests",
        "streamlit",
    ],
    extras_require={
        "excel-legacy": ["xlrd"],
        "test": ["pytest"],
        "all": ["xlrd"],
    },
    entry_points={
        "console_scripts": [
            "catalog-import=catalog_import.cli:main",
        ]
    },
)
