from setuptools import setup, find_packages

setup(
    name="taxa-network",
    version="0.1.0",
    description="Microbial co-occurrence networks with permutation-validated associations and Random Forest models",
    author="Nomlindelo Mfuphi",
    author_email="nmfuphi@csir.co.za",
    packages=find_packages(include=["taxa_network", "taxa_network.*"]),
    python_requires=">=3.9",
    install_requires=[
        "pandas>=2.2.3",
        "numpy>=2.1.2",
        "scikit-learn>=1.5.2",
        "scipy>=1.13.1",
        "statsmodels>=0.14.4",
        "pyyaml>=6.0.2",
        "networkx>=3.2",
        "matplotlib>=3.8"
    ],
    extras_require={
        "test": ["pytest>=7.0"]
    },
    entry_points={
        "console_scripts": [
            "taxa_network=taxa_network.cli:main"
        ]
    },
    include_package_data=True,
    package_data={
        "": ["config.yml"]
    }
)
