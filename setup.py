"""
tensorlines Setup Configuration
"""

import re
from setuptools import setup, find_packages
from pathlib import Path

HERE = Path(__file__).parent

# Single source of the version: src/tensorlines/__init__.py
version = re.search(
    r'^__version__ = "([^"]+)"',
    (HERE / "src" / "tensorlines" / "__init__.py").read_text(encoding='utf-8'),
    re.M
).group(1)

readme_path = HERE / "README.md"
long_description = readme_path.read_text(encoding='utf-8') if readme_path.exists() else ""

# Runtime dependencies are pinned in requirements.txt
requirements = [
    line.strip()
    for line in (HERE / "requirements.txt").read_text().splitlines()
    if line.strip() and not line.startswith('#')
]

test_requirements = [
    'pytest>=7.4.0',
    'pytest-cov>=4.1.0',
]

setup(
    name="tensorlines",
    version=version,
    description="Diffusion Tensor Tensorline Fiber Tracking & Bundle Statistics",
    long_description=long_description,
    long_description_content_type="text/markdown",
    license="MIT",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.10",
    install_requires=requirements,
    extras_require={
        'test': test_requirements,
        'dev': test_requirements + [
            'black>=23.0.0',
            'flake8>=6.0.0',
            'mypy>=1.4.0',
        ]
    },
    entry_points={
        'console_scripts': [
            'tensorlines=tensorlines.cli:main',
        ],
    },
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Science/Research',
        'Topic :: Scientific/Engineering :: Medical Science Apps.',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
    ],
    keywords='neuroimaging tractography diffusion-tensor tensorline fibers',
)
