"""Configuration module - re-exports all config values."""
from .paths import *
from .scanner import *
