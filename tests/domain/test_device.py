import unittest

from keygraph.domain.device import Device, DeviceLike, DeviceType


class TestDevice(unittest.TestCase):
    def test_cpu(self):
        d = Device("cpu")
        self.assertTrue(d.is_cpu())
        self.assertFalse(d.is_cuda())
        self.assertIsNone(d.index)
        self.assertEqual(str(d), "cpu")

    def test_cuda_and_gpu_alias(self):
        self.assertEqual(Device("cuda:1"), Device("gpu:1"))
        d = Device("gpu:2")
        self.assertIs(d.type, DeviceType.CUDA)
        self.assertEqual(d.index, 2)
        self.assertEqual(str(d), "cuda:2")

    def test_copy_constructor(self):
        d = Device(Device("cuda:0"))
        self.assertEqual(d, Device("cuda:0"))

    def test_invalid_strings_raise(self):
        for bad in ("", "cuda", "cuda:-1", "tpu:0", "CPU"):
            with self.subTest(device=bad):
                with self.assertRaises(ValueError):
                    Device(bad)

    def test_hashable_and_protocol(self):
        self.assertEqual(len({Device("cpu"), Device("cpu"), Device("cuda:0")}), 2)
        self.assertIsInstance(Device("cpu"), DeviceLike)


if __name__ == "__main__":
    unittest.main()
