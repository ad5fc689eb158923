"""
Hardware detection and the hardware descriptor consumed by the fit engine
"""

import asyncio
import json
import logging
import os
import platform
import re
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

import psutil

from .exceptions import InvalidHardwareError

# GPUtil is an optional extra; nvidia-smi covers the same GPUs without it
try:
    import GPUtil
    HAS_GPUTIL = True
except ImportError:
    HAS_GPUTIL = False

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 86400


class GpuBackend(Enum):
    NONE = "none"
    CUDA = "cuda"
    METAL = "metal"
    ROCM = "rocm"
    VULKAN = "vulkan"
    CPU = "cpu"

    @property
    def is_gpu(self) -> bool:
        return _BACKEND_IS_GPU[self]

    @property
    def label(self) -> str:
        return _BACKEND_LABELS[self]


_BACKEND_IS_GPU = {
    GpuBackend.NONE: False,
    GpuBackend.CUDA: True,
    GpuBackend.METAL: True,
    GpuBackend.ROCM: True,
    GpuBackend.VULKAN: True,
    GpuBackend.CPU: False,
}

_BACKEND_LABELS = {
    GpuBackend.NONE: "None",
    GpuBackend.CUDA: "CUDA",
    GpuBackend.METAL: "Metal",
    GpuBackend.ROCM: "ROCm",
    GpuBackend.VULKAN: "Vulkan",
    GpuBackend.CPU: "CPU",
}

_VENDOR_BACKENDS = {
    "NVIDIA": GpuBackend.CUDA,
    "AMD": GpuBackend.ROCM,
    "Apple": GpuBackend.METAL,
}


@dataclass
class CPUInfo:
    """CPU information"""
    name: str
    cores: int
    arch: str


@dataclass
class GPUInfo:
    """GPU information"""
    name: str
    vram: float
    vendor: str
    driver: Optional[str] = None
    note: Optional[str] = None


@dataclass
class SystemInfo:
    """Raw probe results"""
    os: str
    arch: str
    cpu: CPUInfo
    ram: float
    gpus: List[GPUInfo] = field(default_factory=list)


@dataclass(frozen=True)
class SystemSpecs:
    """Fixed-shape hardware descriptor.

    When ``unified_memory`` is set, ``gpu_vram_gb`` is advisory only: the GPU
    draws from system RAM.
    """
    cpu_name: str
    cpu_cores: int
    total_ram_gb: float
    gpu_backend: GpuBackend = GpuBackend.NONE
    gpu_name: Optional[str] = None
    gpu_vram_gb: Optional[float] = None
    unified_memory: bool = False

    def validate(self) -> "SystemSpecs":
        if self.cpu_cores < 1:
            raise InvalidHardwareError(f"cpu_cores must be >= 1, got {self.cpu_cores}")
        if self.total_ram_gb < 0:
            raise InvalidHardwareError(f"total_ram_gb must be >= 0, got {self.total_ram_gb}")
        if self.gpu_vram_gb is not None and self.gpu_vram_gb < 0:
            raise InvalidHardwareError(f"gpu_vram_gb must be >= 0, got {self.gpu_vram_gb}")
        return self

    @property
    def has_gpu(self) -> bool:
        return self.gpu_backend.is_gpu

    @classmethod
    def manual(
        cls,
        ram_gb: float,
        vram_gb: Optional[float] = None,
        backend: GpuBackend = GpuBackend.NONE,
        unified: bool = False,
        cpu_cores: int = 8,
        cpu_name: str = "Manual",
        gpu_name: Optional[str] = None,
    ) -> "SystemSpecs":
        """Builds a descriptor from user-supplied figures"""
        if backend is GpuBackend.NONE and (vram_gb or unified):
            backend = GpuBackend.METAL if unified else GpuBackend.CUDA
        if backend.is_gpu and gpu_name is None:
            gpu_name = f"Manual {backend.label} GPU"
        return cls(
            cpu_name=cpu_name,
            cpu_cores=cpu_cores,
            total_ram_gb=ram_gb,
            gpu_backend=backend,
            gpu_name=gpu_name,
            gpu_vram_gb=vram_gb,
            unified_memory=unified,
        ).validate()

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["gpu_backend"] = self.gpu_backend.value
        return data


def specs_from_system_info(info: SystemInfo) -> SystemSpecs:
    """Reduces probe results to the descriptor used by the engine"""
    if not info.gpus:
        return SystemSpecs(
            cpu_name=info.cpu.name,
            cpu_cores=max(1, info.cpu.cores),
            total_ram_gb=info.ram,
        ).validate()

    # Use GPU with most VRAM
    gpu = max(info.gpus, key=lambda g: g.vram)
    backend = _VENDOR_BACKENDS.get(gpu.vendor, GpuBackend.VULKAN)
    unified = gpu.vendor == "Apple"
    return SystemSpecs(
        cpu_name=info.cpu.name,
        cpu_cores=max(1, info.cpu.cores),
        total_ram_gb=info.ram,
        gpu_backend=backend,
        gpu_name=gpu.name,
        gpu_vram_gb=gpu.vram,
        unified_memory=unified,
    ).validate()


class HardwareDetector:
    """Detects local hardware capabilities"""

    def __init__(self, cache_file: Optional[Path] = None):
        self._system_info: Optional[SystemInfo] = None
        self._cache_file = cache_file or Path.home() / ".llmfit" / "hardware_cache.json"

    async def detect_system_info(self, use_cache: bool = True) -> SystemInfo:
        """Detects system information with caching"""
        if self._system_info and use_cache:
            return self._system_info

        if use_cache and self._cache_file.exists():
            try:
                with open(self._cache_file, 'r') as f:
                    cached_data = json.load(f)
                if time.time() - cached_data.get('timestamp', 0) < CACHE_TTL_SECONDS:
                    self._system_info = self._parse_cached_info(cached_data)
                    return self._system_info
            except (OSError, json.JSONDecodeError, KeyError, TypeError) as e:
                logger.warning(f"Failed to load hardware cache: {e}")

        logger.info("Detecting hardware configuration...")

        cpu_task = asyncio.create_task(self._detect_cpu())
        ram_task = asyncio.create_task(self._detect_ram())
        gpu_task = asyncio.create_task(self._detect_gpus())

        cpu_info = await cpu_task
        ram = await ram_task
        gpus = await gpu_task

        self._system_info = SystemInfo(
            os=platform.system(),
            arch=platform.machine(),
            cpu=cpu_info,
            ram=ram,
            gpus=gpus
        )

        if use_cache:
            self._cache_hardware_info()

        return self._system_info

    def _parse_cached_info(self, cached_data: Dict) -> SystemInfo:
        """Parse cached hardware information"""
        return SystemInfo(
            os=cached_data['os'],
            arch=cached_data['arch'],
            cpu=CPUInfo(**cached_data['cpu']),
            ram=cached_data['ram'],
            gpus=[GPUInfo(**gpu) for gpu in cached_data['gpus']]
        )

    def _cache_hardware_info(self) -> None:
        """Cache hardware information to file"""
        cache_data = asdict(self._system_info)
        cache_data['timestamp'] = time.time()
        try:
            self._cache_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self._cache_file, 'w') as f:
                json.dump(cache_data, f, indent=2)
        except OSError as e:
            logger.warning(f"Failed to cache hardware info: {e}")

    def clear_cache(self) -> bool:
        """Removes the cache file, returning whether one existed"""
        if self._cache_file.exists():
            self._cache_file.unlink()
            return True
        return False

    async def _detect_cpu(self) -> CPUInfo:
        """Detects CPU information with platform-specific lookups"""
        cpu_info = CPUInfo(
            name=platform.processor() or "Unknown",
            cores=self._get_cpu_cores(),
            arch=platform.machine()
        )

        try:
            if platform.system() == "Linux":
                cpu_info.name = await self._get_linux_cpu_name()
            elif platform.system() == "Darwin":
                cpu_info.name = await self._get_macos_cpu_name()
        except OSError as e:
            logger.warning(f"Failed to get detailed CPU info: {e}")

        return cpu_info

    def _get_cpu_cores(self) -> int:
        """Get CPU core count with fallback"""
        return psutil.cpu_count(logical=False) or psutil.cpu_count() or os.cpu_count() or 1

    async def _get_linux_cpu_name(self) -> str:
        """Get CPU name on Linux"""
        try:
            with open("/proc/cpuinfo", "r") as f:
                for line in f:
                    if "model name" in line:
                        return line.split(":")[1].strip()
        except FileNotFoundError:
            pass
        return "Unknown Linux CPU"

    async def _get_macos_cpu_name(self) -> str:
        """Get CPU name on macOS"""
        stdout = await self._run('sysctl', '-n', 'machdep.cpu.brand_string')
        return stdout.strip() if stdout else "Unknown macOS CPU"

    async def _detect_ram(self) -> float:
        """Detects total system RAM in GB"""
        return round(psutil.virtual_memory().total / (1024**3), 1)

    async def _run(self, *cmd: str) -> Optional[str]:
        """Runs a probe command, returning stdout or None on failure"""
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
            stdout, _ = await proc.communicate()
        except (OSError, ValueError) as e:
            logger.debug(f"{cmd[0]} unavailable: {e}")
            return None
        if proc.returncode != 0:
            return None
        return stdout.decode()

    async def _detect_gpus(self) -> List[GPUInfo]:
        """Detects available GPUs with parallel detection"""
        gpus = []
        tasks = []

        if HAS_GPUTIL:
            tasks.append(asyncio.create_task(self._detect_nvidia_gputil()))

        if platform.system() != "Darwin":
            tasks.append(asyncio.create_task(self._detect_nvidia_smi()))

        if platform.system() == "Linux":
            tasks.append(asyncio.create_task(self._detect_amd_gpus()))

        if platform.system() == "Darwin":
            tasks.append(asyncio.create_task(self._detect_apple_gpus()))

        results = await asyncio.gather(*tasks, return_exceptions=True)

        for result in results:
            if isinstance(result, list):
                gpus.extend(result)
            elif isinstance(result, Exception):
                logger.warning(f"GPU detection failed: {result}")

        # Remove duplicates based on name
        unique_gpus = []
        seen_names = set()
        for gpu in gpus:
            if gpu.name not in seen_names:
                unique_gpus.append(gpu)
                seen_names.add(gpu.name)

        return unique_gpus

    async def _detect_nvidia_gputil(self) -> List[GPUInfo]:
        """Detect NVIDIA GPUs using GPUtil"""
        try:
            nvidia_gpus = GPUtil.getGPUs()
        except Exception as e:
            # GPUtil surfaces driver problems as arbitrary exceptions
            logger.warning(f"GPUtil detection failed: {e}")
            return []
        return [
            GPUInfo(
                name=gpu.name,
                vram=round(gpu.memoryTotal / 1024, 1),
                driver=gpu.driver,
                vendor="NVIDIA"
            )
            for gpu in nvidia_gpus
        ]

    async def _detect_nvidia_smi(self) -> List[GPUInfo]:
        """Detect NVIDIA GPUs using nvidia-smi"""
        stdout = await self._run(
            'nvidia-smi', '--query-gpu=name,memory.total', '--format=csv,noheader,nounits'
        )
        if not stdout:
            return []
        gpus = []
        for line in stdout.strip().split('\n'):
            parts = [p.strip() for p in line.split(',')]
            if len(parts) == 2:
                try:
                    vram_mb = float(parts[1])
                except ValueError:
                    logger.debug(f"Unparseable nvidia-smi line: {line!r}")
                    continue
                gpus.append(GPUInfo(name=parts[0], vram=round(vram_mb / 1024, 1), vendor="NVIDIA"))
        return gpus

    async def _detect_amd_gpus(self) -> List[GPUInfo]:
        """Detect AMD GPUs using rocm-smi"""
        stdout = await self._run('rocm-smi', '--showmeminfo', 'vram')
        if not stdout:
            return []
        vram_match = re.search(r'Total Memory \(B\):\s+(\d+)', stdout)
        if vram_match:
            vram_gb = int(vram_match.group(1)) / (1024**3)
        else:
            vram_match = re.search(r'Total\s+:\s+(\d+)\s+MB', stdout)
            if not vram_match:
                return []
            vram_gb = float(vram_match.group(1)) / 1024
        return [GPUInfo(name="AMD GPU", vram=round(vram_gb, 1), vendor="AMD")]

    async def _detect_apple_gpus(self) -> List[GPUInfo]:
        """Detect Apple GPUs (Apple Silicon)"""
        arm64 = await self._run('sysctl', '-n', 'hw.optional.arm64')
        if not arm64 or arm64.strip() != '1':
            return []

        brand = await self._run('sysctl', '-n', 'machdep.cpu.brand_string')
        chip_name = "Apple Silicon GPU"
        if brand:
            match = re.search(r'\bM\d+(?:\s+(?:Pro|Max|Ultra))?', brand)
            if match:
                chip_name = f"Apple {match.group(0)} GPU"

        total_ram = await self._detect_ram()
        return [GPUInfo(
            name=chip_name,
            vram=total_ram,
            vendor="Apple",
            note="Unified memory (shared with CPU)"
        )]

    def get_specs(self) -> SystemSpecs:
        """Builds the hardware descriptor from detected information"""
        if not self._system_info:
            raise RuntimeError("System info not detected. Call detect_system_info() first.")
        return specs_from_system_info(self._system_info)
