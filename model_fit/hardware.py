"""
Hardware detection and system information gathering
"""

import logging
import os
import platform
import re
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

import psutil

logger = logging.getLogger(__name__)

GIB = 1024 ** 3
PROBE_TIMEOUT = 10
DRM_ROOT = Path("/sys/class/drm")

AMD_PCI_VENDOR = "0x1002"
INTEL_PCI_VENDOR = "0x8086"
VM_STAT_DEFAULT_PAGE_SIZE = 16384
AVAILABLE_RAM_FALLBACK_RATIO = 0.8

# Reported VRAM below this is treated as missing
MIN_PLAUSIBLE_VRAM_GB = 0.1
# Win32_VideoController.AdapterRAM is a 32-bit field and saturates near 4 GB
ADAPTER_RAM_CAP_GB = 4.1

WINDOWS_GPU_QUERY = (
    "Get-CimInstance Win32_VideoController | Select-Object Name,AdapterRAM | "
    "ForEach-Object { $_.Name + '|' + $_.AdapterRAM }"
)
WINDOWS_SKIPPED_ADAPTERS = ("microsoft", "basic", "virtual")


class HardwareDetectionError(RuntimeError):
    """Raised when system memory cannot be determined"""


class GPUBackend(Enum):
    """Acceleration backend used for inference"""
    CUDA = "CUDA"
    METAL = "Metal"
    ROCM = "ROCm"
    VULKAN = "Vulkan"
    SYCL = "SYCL"
    CPU_ARM = "CPU (ARM)"
    CPU_X86 = "CPU (x86)"

    @property
    def label(self) -> str:
        return self.value


# Substring -> backend, checked in order against the lower-cased adapter name
BACKEND_NAME_RULES: List[Tuple[Tuple[str, ...], GPUBackend]] = [
    (("nvidia", "geforce", "quadro", "tesla", "rtx"), GPUBackend.CUDA),
    (("amd", "radeon", "ati"), GPUBackend.VULKAN),
    (("intel", "arc"), GPUBackend.SYCL),
]

# Substring -> VRAM in GB. More specific names must come before the
# names they contain ("4070 ti" before "4070", "7900 xtx" before "7900").
VRAM_ESTIMATES: List[Tuple[str, float]] = [
    # NVIDIA RTX 50
    ("5090", 32), ("5080", 16), ("5070 ti", 16), ("5070", 12), ("5060 ti", 16), ("5060", 8),
    # NVIDIA RTX 40
    ("4090", 24), ("4080", 16), ("4070 ti", 12), ("4070", 12), ("4060 ti", 16), ("4060", 8),
    # NVIDIA RTX 30
    ("3090", 24), ("3080 ti", 12), ("3080", 10), ("3070", 8), ("3060 ti", 8), ("3060", 12),
    # Data center
    ("h100", 80), ("a100", 80), ("l40", 48), ("a10", 24), ("t4", 16),
    # AMD RX 9000 / 7000 / 6000 / 5000
    ("9070 xt", 16), ("9070", 12),
    ("7900 xtx", 24), ("7900", 20), ("7800", 16), ("7700", 12), ("7600", 8),
    ("6950", 16), ("6900", 16), ("6800", 16), ("6750", 12), ("6700", 12),
    ("6650", 8), ("6600", 8), ("6500", 4),
    ("5700 xt", 8), ("5700", 8), ("5600", 6), ("5500", 4),
    # Generic tiers
    ("rtx", 8), ("gtx", 4), ("rx ", 8), ("radeon", 8),
]


@dataclass(frozen=True)
class GPUInfo:
    """GPU information"""
    name: str
    vram_gb: Optional[float]
    backend: GPUBackend
    count: int = 1
    unified_memory: bool = False


@dataclass(frozen=True)
class SystemSpecs:
    """Complete system information; gpus sorted by VRAM, largest first"""
    os: str
    arch: str
    total_ram_gb: float
    available_ram_gb: float
    cpu_cores: int
    cpu_name: str
    gpus: Tuple[GPUInfo, ...] = field(default_factory=tuple)
    is_wsl: bool = False

    @property
    def primary_gpu(self) -> Optional[GPUInfo]:
        return self.gpus[0] if self.gpus else None

    @property
    def has_gpu(self) -> bool:
        return bool(self.gpus)

    @property
    def gpu_vram_gb(self) -> Optional[float]:
        return self.primary_gpu.vram_gb if self.primary_gpu else None

    @property
    def gpu_name(self) -> Optional[str]:
        return self.primary_gpu.name if self.primary_gpu else None

    @property
    def gpu_count(self) -> int:
        return self.primary_gpu.count if self.primary_gpu else 0

    @property
    def unified_memory(self) -> bool:
        return self.primary_gpu.unified_memory if self.primary_gpu else False

    @property
    def cpu_backend(self) -> GPUBackend:
        return cpu_backend(self.cpu_name, self.arch)

    @property
    def backend(self) -> GPUBackend:
        """Backend of the primary GPU, or the CPU backend when there is none"""
        return self.primary_gpu.backend if self.primary_gpu else self.cpu_backend


def run_command(cmd: Sequence[str], timeout: int = PROBE_TIMEOUT) -> Optional[str]:
    """Run an external probe; stdout on success, None on any failure"""
    try:
        result = subprocess.run(
            list(cmd),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError:
        logger.debug(f"{cmd[0]} not found")
        return None
    except subprocess.TimeoutExpired:
        logger.warning(f"{cmd[0]} timed out after {timeout}s")
        return None
    except OSError as e:
        logger.debug(f"{cmd[0]} failed to start: {e}")
        return None

    if result.returncode != 0:
        logger.debug(f"{cmd[0]} exited with {result.returncode}")
        return None
    return result.stdout


def estimate_vram_from_name(name: str) -> float:
    """Approximate VRAM in GB from the GPU model name, 0 when unknown"""
    lowered = name.lower()
    for needle, vram in VRAM_ESTIMATES:
        if needle in lowered:
            return float(vram)
    return 0.0


def resolve_reported_vram(reported_gb: float, name: str) -> Optional[float]:
    """Replace missing or saturated VRAM figures with the name-based estimate"""
    estimate = estimate_vram_from_name(name)
    vram = reported_gb
    if vram < MIN_PLAUSIBLE_VRAM_GB or (vram <= ADAPTER_RAM_CAP_GB and estimate > ADAPTER_RAM_CAP_GB):
        if estimate > 0:
            vram = estimate
    return vram if vram > 0 else None


def infer_gpu_backend(name: str) -> GPUBackend:
    lowered = name.lower()
    for needles, backend in BACKEND_NAME_RULES:
        if any(needle in lowered for needle in needles):
            return backend
    return GPUBackend.VULKAN


def cpu_backend(cpu_name: str, arch: str) -> GPUBackend:
    """CPU inference backend: ARM for Apple or arm64 machines, x86 otherwise"""
    if "apple" in cpu_name.lower() or arch.lower() in ("arm64", "aarch64"):
        return GPUBackend.CPU_ARM
    return GPUBackend.CPU_X86


def sort_gpus(gpus: Sequence[GPUInfo]) -> Tuple[GPUInfo, ...]:
    """Largest VRAM first; unknown VRAM counts as zero"""
    return tuple(sorted(gpus, key=lambda gpu: gpu.vram_gb or 0.0, reverse=True))


def parse_windows_gpu_list(text: str) -> List[GPUInfo]:
    """Parse "Name|AdapterRAM" lines, skipping virtual and basic adapters"""
    gpus = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        name, _, raw_vram = line.partition("|")
        name = name.strip()
        lowered = name.lower()
        if not name or any(skip in lowered for skip in WINDOWS_SKIPPED_ADAPTERS):
            continue
        try:
            vram_bytes = int(raw_vram.strip() or 0)
        except ValueError:
            vram_bytes = 0
        gpus.append(GPUInfo(
            name=name,
            vram_gb=resolve_reported_vram(vram_bytes / GIB, name),
            backend=infer_gpu_backend(name),
        ))
    return gpus


def parse_vm_stat(text: str) -> float:
    """Free + inactive + purgeable pages from vm_stat output, in GB"""
    page_size = VM_STAT_DEFAULT_PAGE_SIZE
    match = re.search(r"page size of (\d+) bytes", text)
    if match:
        page_size = int(match.group(1))

    pages = 0
    for kind in ("free", "inactive", "purgeable"):
        match = re.search(rf"^Pages {kind}:\s+(\d+)", text, re.MULTILINE)
        if match:
            pages += int(match.group(1))
    return pages * page_size / GIB


def _names_overlap(a: str, b: str) -> bool:
    a, b = a.lower(), b.lower()
    return a in b or b in a


def _read_text(path: Path) -> Optional[str]:
    try:
        return path.read_text().strip()
    except OSError:
        return None


def _read_vram_bytes(device: Path) -> Optional[float]:
    """VRAM from an amdgpu-style mem_info_vram_total file, in GB"""
    raw = _read_text(device / "mem_info_vram_total")
    if not raw:
        return None
    try:
        vram_bytes = int(raw)
    except ValueError:
        return None
    return vram_bytes / GIB if vram_bytes > 0 else None


@lru_cache(maxsize=None)
def is_running_in_wsl() -> bool:
    """True under Windows Subsystem for Linux; computed once per process"""
    if platform.system() != "Linux":
        return False
    if os.environ.get("WSL_INTEROP") or os.environ.get("WSL_DISTRO_NAME"):
        return True
    for path in ("/proc/sys/kernel/osrelease", "/proc/version"):
        content = _read_text(Path(path))
        if content and "microsoft" in content.lower():
            return True
    return False


class HardwareDetector:
    """Detects local hardware capabilities; every GPU probe is best-effort"""

    def __init__(self, drm_root: Path = DRM_ROOT):
        self.drm_root = drm_root
        self._system_info: Optional[SystemSpecs] = None

    def detect(self, refresh: bool = False) -> SystemSpecs:
        """Build the hardware snapshot, reusing it unless refresh is set"""
        if self._system_info and not refresh:
            return self._system_info

        logger.info("Detecting hardware configuration...")
        total_ram, available_ram = self._detect_ram()
        cpu_name = self._detect_cpu_name()
        gpus = self._detect_gpus(total_ram, cpu_name)

        self._system_info = SystemSpecs(
            os=platform.system(),
            arch=platform.machine(),
            total_ram_gb=total_ram,
            available_ram_gb=available_ram,
            cpu_cores=self._get_cpu_cores(),
            cpu_name=cpu_name,
            gpus=sort_gpus(gpus),
            is_wsl=is_running_in_wsl(),
        )
        return self._system_info

    # RAM / CPU

    def _detect_ram(self) -> Tuple[float, float]:
        """Total and available RAM in GB"""
        try:
            memory = psutil.virtual_memory()
        except Exception as e:
            raise HardwareDetectionError(f"Could not read system memory: {e}") from e

        if not memory.total:
            raise HardwareDetectionError("System reported 0 bytes of memory")

        total = memory.total / GIB
        available = memory.available / GIB
        if memory.available == 0:
            available = self._available_ram_fallback(total)
        return total, available

    def _available_ram_fallback(self, total_gb: float) -> float:
        if platform.system() == "Darwin":
            output = run_command(["vm_stat"])
            if output:
                available = parse_vm_stat(output)
                if available > 0:
                    return available
        return total_gb * AVAILABLE_RAM_FALLBACK_RATIO

    def _get_cpu_cores(self) -> int:
        """Logical CPU count with fallback"""
        try:
            return psutil.cpu_count() or os.cpu_count() or 1
        except Exception:
            return os.cpu_count() or 1

    def _detect_cpu_name(self) -> str:
        system = platform.system()
        name = None
        if system == "Linux":
            name = self._get_linux_cpu_name()
        elif system == "Darwin":
            output = run_command(["sysctl", "-n", "machdep.cpu.brand_string"])
            name = output.strip() if output else None
        return name or platform.processor() or "Unknown CPU"

    def _get_linux_cpu_name(self) -> Optional[str]:
        """CPU model from /proc/cpuinfo"""
        try:
            with open("/proc/cpuinfo", "r") as f:
                for line in f:
                    key, _, value = line.partition(":")
                    if key.strip() in ("model name", "Hardware", "Model") and value.strip():
                        return value.strip()
        except OSError:
            pass
        return None

    # GPUs

    def _detect_gpus(self, total_ram_gb: float, cpu_name: str) -> List[GPUInfo]:
        """Run each GPU probe in order; a failing probe contributes nothing"""
        probes: List[Tuple[str, Callable[[], List[GPUInfo]]]] = [
            ("nvidia", self._detect_nvidia_gpus),
            ("amd", self._detect_amd_gpus),
            ("windows", self._detect_windows_gpus),
            ("intel", self._detect_intel_gpus),
            ("apple", lambda: self._detect_apple_gpus(total_ram_gb, cpu_name)),
        ]

        gpus: List[GPUInfo] = []
        for probe_name, probe in probes:
            try:
                found = probe()
            except Exception as e:
                logger.warning(f"GPU detection failed ({probe_name}): {e}")
                continue

            # Only results of earlier probes count as duplicates
            earlier = list(gpus)
            for gpu in found:
                if probe_name == "intel" and any("intel" in g.name.lower() for g in earlier):
                    continue
                if any(_names_overlap(gpu.name, existing.name) for existing in earlier):
                    logger.debug(f"Skipping duplicate GPU {gpu.name} from {probe_name}")
                    continue
                gpus.append(gpu)
        return gpus

    def _detect_nvidia_gpus(self) -> List[GPUInfo]:
        """NVIDIA GPUs via nvidia-smi, one entry per model with summed VRAM"""
        output = run_command([
            "nvidia-smi", "--query-gpu=memory.total,name", "--format=csv,noheader,nounits",
        ])
        if not output:
            return []

        totals = {}
        counts = {}
        for line in output.splitlines():
            line = line.strip()
            if not line:
                continue
            raw_vram, _, name = line.partition(",")
            try:
                vram_mb = float(raw_vram.strip())
            except ValueError:
                continue
            name = name.strip() or "NVIDIA GPU"
            totals[name] = totals.get(name, 0.0) + vram_mb
            counts[name] = counts.get(name, 0) + 1

        gpus = []
        for name, vram_mb in totals.items():
            vram_gb = vram_mb / 1024
            if vram_gb < MIN_PLAUSIBLE_VRAM_GB:
                vram_gb = estimate_vram_from_name(name)
            gpus.append(GPUInfo(
                name=name,
                vram_gb=vram_gb if vram_gb > 0 else None,
                backend=GPUBackend.CUDA,
                count=counts[name],
            ))
        return gpus

    def _detect_amd_gpus(self) -> List[GPUInfo]:
        """AMD GPUs via rocm-smi, falling back to sysfs when it is absent"""
        gpu = self._detect_amd_rocm()
        if gpu is None:
            gpu = self._detect_amd_sysfs()
        return [gpu] if gpu else []

    def _detect_amd_rocm(self) -> Optional[GPUInfo]:
        output = run_command(["rocm-smi", "--showmeminfo", "vram"])
        if output is None:
            return None

        total_bytes = 0
        count = 0
        for line in output.splitlines():
            lowered = line.lower()
            if "total" not in lowered or "used" in lowered:
                continue
            for token in reversed(line.split()):
                if token.isdigit() and int(token) > 0:
                    total_bytes += int(token)
                    count += 1
                    break

        name = "AMD GPU"
        product = run_command(["rocm-smi", "--showproductname"])
        if product:
            match = re.search(r"card (?:series|model)\s*:\s*(.+)", product, re.IGNORECASE)
            if match and match.group(1).strip():
                name = match.group(1).strip()

        if total_bytes > 0:
            vram_gb = total_bytes / GIB
        else:
            vram_gb = estimate_vram_from_name(name) or None
        return GPUInfo(name=name, vram_gb=vram_gb, backend=GPUBackend.ROCM, count=max(count, 1))

    def _detect_amd_sysfs(self) -> Optional[GPUInfo]:
        if platform.system() != "Linux" or not self.drm_root.is_dir():
            return None

        for card in sorted(self.drm_root.iterdir()):
            if not card.name.startswith("card") or "-" in card.name:
                continue
            device = card / "device"
            if _read_text(device / "vendor") != AMD_PCI_VENDOR:
                continue

            name = self._get_amd_name_lspci() or "AMD GPU"
            vram_gb = _read_vram_bytes(device) or estimate_vram_from_name(name) or None
            return GPUInfo(name=name, vram_gb=vram_gb, backend=GPUBackend.VULKAN)
        return None

    def _get_amd_name_lspci(self) -> Optional[str]:
        """Marketing name of the first AMD display controller in lspci"""
        output = run_command(["lspci"])
        if not output:
            return None
        for line in output.splitlines():
            lowered = line.lower()
            if not any(kind in lowered for kind in ("vga", "3d", "display")):
                continue
            if not re.search(r"\b(amd|ati|radeon)\b", lowered):
                continue
            _, _, description = line.partition(": ")
            description = description.strip()
            start, end = description.rfind("["), description.rfind("]")
            if 0 <= start < end:
                return description[start + 1:end]
            return description or None
        return None

    def _detect_windows_gpus(self) -> List[GPUInfo]:
        if platform.system() != "Windows":
            return []
        output = run_command(["powershell", "-NoProfile", "-Command", WINDOWS_GPU_QUERY])
        if not output:
            return []
        return parse_windows_gpu_list(output)

    def _detect_intel_gpus(self) -> List[GPUInfo]:
        """Intel discrete GPU via sysfs, confirmed through lspci when sysfs has no VRAM"""
        if platform.system() != "Linux":
            return []

        if self.drm_root.is_dir():
            for card in sorted(self.drm_root.iterdir()):
                device = card / "device"
                if _read_text(device / "vendor") != INTEL_PCI_VENDOR:
                    continue
                vram_gb = _read_vram_bytes(device)
                if vram_gb:
                    return [GPUInfo(name="Intel Arc", vram_gb=vram_gb, backend=GPUBackend.SYCL)]

        output = run_command(["lspci"])
        if output:
            for line in output.splitlines():
                lowered = line.lower()
                if "intel" in lowered and "arc" in lowered:
                    return [GPUInfo(name="Intel Arc", vram_gb=None, backend=GPUBackend.SYCL)]
        return []

    def _detect_apple_gpus(self, total_ram_gb: float, cpu_name: str) -> List[GPUInfo]:
        """Apple Silicon GPU sharing the whole system memory pool"""
        if platform.system() != "Darwin":
            return []
        output = run_command(["system_profiler", "SPDisplaysDataType"])
        if not output:
            return []

        lowered = output.lower()
        if "apple m" not in lowered and "apple gpu" not in lowered:
            return []

        name = cpu_name if "apple" in cpu_name.lower() else "Apple Silicon"
        return [GPUInfo(
            name=name,
            vram_gb=total_ram_gb,
            backend=GPUBackend.METAL,
            unified_memory=True,
        )]
