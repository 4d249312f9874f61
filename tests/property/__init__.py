"""
MAILDECK - Property-Based Testing Suite

Property-based testing using Hypothesis for the startup chain and the
permission rebuild.
"""
