# setup.py
from setuptools import setup, find_packages
import os

# Read README for long description
def read_readme():
    readme_path = os.path.join(os.path.dirname(__file__), "README.md")
    if os.path.exists(readme_path):
        with open(readme_path, "r", encoding="utf-8") as f:
            return f.read()
    return "Speech Aligner - phone-level forced alignment of speech against transcripts"

setup(
    name="speech-aligner",
    version="0.1.0",
    packages=find_packages(exclude=["tests*", "docs*", "examples*"]),
    python_requires=">=3.8",

    # Core dependencies
    install_requires=[
        "torch>=1.9.0",
        "torchaudio>=0.9.0",
        "click>=8.0.0",
    ],

    # Optional dependencies
    extras_require={
        "dev": [
            "pytest>=6.0",
            "pytest-cov>=3.0.0",
            "black>=22.0.0",
            "flake8>=4.0.0",
        ],
        "test": [
            "pytest>=6.0",
            "pytest-cov>=3.0.0",
        ],
        "audio": [
            "soundfile>=0.10.0",
        ],
    },

    # CLI entry point
    entry_points={
        "console_scripts": [
            "speech-align=speech_aligner.cli:main",
        ],
    },

    # Package metadata
    description="Speech Aligner - phone-level forced alignment of speech against transcripts",
    long_description=read_readme(),
    long_description_content_type="text/markdown",

    # Package classification
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Intended Audience :: Science/Research",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Topic :: Multimedia :: Sound/Audio :: Speech",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "Topic :: Text Processing :: Linguistic",
    ],

    # Keywords for discovery
    keywords=[
        "phone", "alignment", "speech", "audio", "forced-alignment",
        "viterbi", "mfcc", "htk", "ctm", "kaldi",
    ],

    include_package_data=True,
    zip_safe=False,
)
